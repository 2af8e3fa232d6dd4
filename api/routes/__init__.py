"""
API Routes Package

Route handlers organized by feature:
- sessions.py: capture session lifecycle and frame ingestion
- identification.py: identify a person from captured samples
- identities.py: enrollment and identity management
"""

from api.routes.sessions import router as sessions_router
from api.routes.identification import router as identification_router
from api.routes.identities import router as identities_router

__all__ = [
    "sessions_router",
    "identification_router",
    "identities_router",
]
