"""
Identity Registry Module

Persistence of enrolled identities. The match engine only reads from the
registry; enrollment writes to it.

An EnrolledIdentity keeps two lists of biometric data, one per modality:
- embedding_samples: L2-normalized vectors
- geometric_samples: signature strings ("face_<l>_<t>_<w>_<h>_<yaw>_<pitch>_<ms>")

Two implementations are provided:
- InMemoryRegistry: dict-backed, for tests and short-lived sessions
- SqliteRegistry: one row per identity, samples stored as JSON arrays of
  their storage strings

save() replaces an existing record with the same identity_id, so
re-enrolling a person overwrites their old samples.

Usage:
    from faceid.registry import EnrolledIdentity, get_registry

    registry = get_registry()
    registry.save(EnrolledIdentity.from_samples("012345678901", samples, "Alice"))
    identities = registry.list_all()
"""

import json
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from faceid.samples import (
    BiometricSample,
    Modality,
    decode_embedding,
    encode_embedding,
    l2_normalize,
)

logger = logging.getLogger(__name__)


@dataclass
class EnrolledIdentity:
    """
    One enrolled person.

    Attributes:
        identity_id: Opaque unique id (for example a national ID card number).
        embedding_samples: List of (D,) float32 unit vectors.
        geometric_samples: List of geometric signature strings.
        display_name: Human-readable name.
        enrolled_at: Unix timestamp of enrollment.
        metadata: Free-form extra fields (captured angles, source, ...).
    """

    identity_id: str
    embedding_samples: List[np.ndarray] = field(default_factory=list)
    geometric_samples: List[str] = field(default_factory=list)
    display_name: Optional[str] = None
    enrolled_at: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.identity_id:
            raise ValueError("identity_id must be a non-empty string")

        vectors = []
        for vector in self.embedding_samples:
            normalized = l2_normalize(vector)
            if normalized is None:
                raise ValueError(f"Zero embedding in identity {self.identity_id}")
            vectors.append(normalized)
        self.embedding_samples = vectors
        self.geometric_samples = [str(s) for s in self.geometric_samples]

    @property
    def sample_count(self) -> int:
        return len(self.embedding_samples) + len(self.geometric_samples)

    @classmethod
    def from_samples(
        cls,
        identity_id: str,
        samples: Iterable[BiometricSample],
        display_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "EnrolledIdentity":
        """Split captured samples by modality into a new identity record."""
        samples = list(samples)
        metadata = dict(metadata or {})
        metadata.setdefault("angles", [s.angle.value for s in samples])

        return cls(
            identity_id=identity_id,
            embedding_samples=[s.vector for s in samples if s.modality == Modality.EMBEDDING],
            geometric_samples=[
                s.signature.to_string() for s in samples if s.modality == Modality.GEOMETRIC
            ],
            display_name=display_name,
            metadata=metadata,
        )


class IdentityRegistry(ABC):
    """Keyed store of enrolled identities, iterated in enrollment order."""

    @abstractmethod
    def lookup(self, identity_id: str) -> Optional[EnrolledIdentity]:
        ...

    @abstractmethod
    def list_all(self) -> List[EnrolledIdentity]:
        ...

    @abstractmethod
    def save(self, identity: EnrolledIdentity) -> None:
        """Insert, or replace the record with the same identity_id."""

    @abstractmethod
    def delete(self, identity_id: str) -> bool:
        """Remove an identity. Returns False if it was not enrolled."""

    def clear(self) -> int:
        """Remove every identity. Returns how many were removed."""
        return sum(1 for i in self.list_all() if self.delete(i.identity_id))

    def count(self) -> int:
        return len(self.list_all())

    def close(self) -> None:
        pass

    def __contains__(self, identity_id: str) -> bool:
        return self.lookup(identity_id) is not None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class InMemoryRegistry(IdentityRegistry):
    def __init__(self, identities: Optional[Iterable[EnrolledIdentity]] = None):
        self._identities: Dict[str, EnrolledIdentity] = {}
        self._lock = threading.Lock()
        for identity in identities or []:
            self.save(identity)

    def lookup(self, identity_id: str) -> Optional[EnrolledIdentity]:
        with self._lock:
            return self._identities.get(identity_id)

    def list_all(self) -> List[EnrolledIdentity]:
        with self._lock:
            return list(self._identities.values())

    def save(self, identity: EnrolledIdentity) -> None:
        with self._lock:
            # Re-enrollment moves the identity to the end, like a fresh row
            self._identities.pop(identity.identity_id, None)
            self._identities[identity.identity_id] = identity

    def delete(self, identity_id: str) -> bool:
        with self._lock:
            return self._identities.pop(identity_id, None) is not None

    def clear(self) -> int:
        with self._lock:
            removed = len(self._identities)
            self._identities.clear()
        return removed

    def count(self) -> int:
        with self._lock:
            return len(self._identities)


class SqliteRegistry(IdentityRegistry):
    """
    SQLite-backed registry.

    Samples are stored as JSON arrays of their storage strings so the
    database stays readable with any SQLite client.

    Args:
        db_path: Path to the SQLite database file (":memory:" for tests).
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_database()
        logger.info(f"SqliteRegistry initialized: db={self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Lazily open the connection; shared across API worker threads."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS identities (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                identity_id TEXT UNIQUE NOT NULL,
                display_name TEXT,
                enrolled_at REAL NOT NULL,
                embedding_samples TEXT NOT NULL,
                geometric_samples TEXT NOT NULL,
                metadata TEXT NOT NULL
            )
        """)
        conn.commit()
        logger.debug("Database schema initialized")

    def lookup(self, identity_id: str) -> Optional[EnrolledIdentity]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT * FROM identities WHERE identity_id = ?", (identity_id,)
            ).fetchone()
        return self._row_to_identity(row) if row is not None else None

    def list_all(self) -> List[EnrolledIdentity]:
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT * FROM identities ORDER BY seq"
            ).fetchall()

        identities = []
        for row in rows:
            identity = self._row_to_identity(row)
            if identity is not None:
                identities.append(identity)
        return identities

    def save(self, identity: EnrolledIdentity) -> None:
        values = (
            identity.identity_id,
            identity.display_name,
            identity.enrolled_at,
            json.dumps([encode_embedding(v) for v in identity.embedding_samples]),
            json.dumps(identity.geometric_samples),
            json.dumps(identity.metadata),
        )
        with self._lock:
            conn = self._get_connection()
            conn.execute("DELETE FROM identities WHERE identity_id = ?", (identity.identity_id,))
            conn.execute("""
                INSERT INTO identities
                    (identity_id, display_name, enrolled_at,
                     embedding_samples, geometric_samples, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
            """, values)
            conn.commit()

        logger.info(
            f"Saved identity {identity.identity_id} "
            f"({len(identity.embedding_samples)} embeddings, "
            f"{len(identity.geometric_samples)} signatures)"
        )

    def delete(self, identity_id: str) -> bool:
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM identities WHERE identity_id = ?", (identity_id,))
            conn.commit()
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted identity {identity_id}")
        return deleted

    def clear(self) -> int:
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM identities")
            conn.commit()
            removed = cursor.rowcount

        logger.info(f"Cleared registry ({removed} identities deleted)")
        return removed

    def count(self) -> int:
        with self._lock:
            row = self._get_connection().execute("SELECT COUNT(*) FROM identities").fetchone()
        return int(row[0])

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug("Database connection closed")

    @staticmethod
    def _row_to_identity(row: sqlite3.Row) -> Optional[EnrolledIdentity]:
        try:
            return EnrolledIdentity(
                identity_id=row["identity_id"],
                embedding_samples=[decode_embedding(s) for s in json.loads(row["embedding_samples"])],
                geometric_samples=json.loads(row["geometric_samples"]),
                display_name=row["display_name"],
                enrolled_at=row["enrolled_at"],
                metadata=json.loads(row["metadata"]),
            )
        except (ValueError, TypeError) as e:
            # json.JSONDecodeError is a ValueError; a JSON null column gives TypeError
            logger.error(f"Skipping corrupt identity record {row['identity_id']}: {e}")
            return None


# Global registry instance (singleton pattern)
_registry_instance: Optional[IdentityRegistry] = None


def get_registry(db_path: Optional[str] = None) -> IdentityRegistry:
    """
    Get or create the shared registry.

    Args:
        db_path: Path to the SQLite database. If None, uses `storage.db_path`
                 from config, relative to the project root.
    """
    global _registry_instance

    if _registry_instance is None:
        if db_path is None:
            from faceid.config import get_storage_path

            db_path = str(get_storage_path())

        _registry_instance = SqliteRegistry(db_path)

    return _registry_instance
