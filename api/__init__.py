"""
API Layer for the Face ID Attendance Core

FastAPI application exposing capture sessions, identification and identity
management to a scanning UI.
"""
