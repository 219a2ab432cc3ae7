"""Persistent credential state consumed by the token trust middleware.

Bearer credentials are never stored raw: only their SHA-256 hex digest is
persisted or compared. Every statement is parameterized.
"""

import hashlib
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Sequence

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    """One-way digest under which a bearer credential is stored and looked up."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class UserRecord:
    id: int
    username: str
    email: str
    role: str
    is_active: bool


@dataclass(frozen=True)
class ClientRecord:
    client_id: str
    client_name: str
    scopes: List[str]
    is_active: bool


@dataclass(frozen=True)
class AccessTokenRow:
    """An issued client credentials token, joined to its client."""
    id: int
    token_hash: str
    client_id: str
    client_name: Optional[str]
    client_is_active: bool
    scopes: List[str]
    is_revoked: bool
    expires_at: datetime


@dataclass(frozen=True)
class SessionRow:
    """A user session, joined to its user."""
    id: int
    token_hash: str
    user_id: int
    username: str
    email: str
    role: str
    user_is_active: bool
    is_revoked: bool
    expires_at: datetime
    last_accessed: Optional[datetime]


class TrustStore(ABC):
    """Abstract persistent store of issued credentials."""

    @abstractmethod
    def find_access_tokens(self, token_hash: str) -> List[AccessTokenRow]:
        """All access token rows stored under `token_hash`."""

    @abstractmethod
    def find_sessions(self, token_hash: str) -> List[SessionRow]:
        """All session rows stored under `token_hash`."""

    @abstractmethod
    def touch_session(self, session_id: int, accessed_at: datetime) -> None:
        """Record that a session was just used. Advisory, last write wins."""

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[UserRecord]:
        pass

    @abstractmethod
    def get_client(self, client_id: str) -> Optional[ClientRecord]:
        pass

    @abstractmethod
    def insert_access_token(
        self,
        token_hash: str,
        client_id: str,
        scopes: Sequence[str],
        expires_at: datetime,
    ) -> int:
        pass

    @abstractmethod
    def insert_session(
        self,
        token_hash: str,
        user_id: int,
        expires_at: datetime,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        pass

    @abstractmethod
    def revoke_token_hash(self, token_hash: str) -> bool:
        """Revoke whichever credential is stored under `token_hash`."""

    @abstractmethod
    def revoke_user_sessions(self, user_id: int) -> int:
        """Revoke every live session of a user, returning how many were revoked."""


_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user',
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS oauth_clients (
    client_id TEXT PRIMARY KEY,
    client_name TEXT NOT NULL,
    scopes TEXT NOT NULL DEFAULT '[]',
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS access_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token_hash TEXT NOT NULL UNIQUE,
    client_id TEXT NOT NULL REFERENCES oauth_clients (client_id),
    scopes TEXT NOT NULL DEFAULT '[]',
    is_revoked INTEGER NOT NULL DEFAULT 0,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users (id),
    token_hash TEXT NOT NULL UNIQUE,
    device_info TEXT,
    ip_address TEXT,
    is_revoked INTEGER NOT NULL DEFAULT 0,
    expires_at TEXT NOT NULL,
    last_accessed TEXT,
    created_at TEXT NOT NULL
);
"""


class SQLiteTrustStore(TrustStore):
    """`TrustStore` backed by a single sqlite3 connection.

    The connection is shared across threads behind a lock, so `:memory:`
    databases work with servers that run handlers in a thread pool.
    """

    def __init__(self, database_path: str = ":memory:"):
        self.database_path = database_path
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(database_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_database()
        logger.info(f"Trust store initialized at {database_path}")

    def _init_database(self) -> None:
        with self._lock:
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(_SCHEMA)

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            with self._conn:
                yield self._conn.cursor()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # users and clients

    def create_user(
        self, username: str, email: str, role: str = "user", is_active: bool = True
    ) -> int:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO users (username, email, role, is_active, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (username, email, role, int(is_active), _to_db(utcnow())),
            )
            return cur.lastrowid

    def set_user_role(self, user_id: int, role: str) -> None:
        with self._cursor() as cur:
            cur.execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))

    def set_user_active(self, user_id: int, is_active: bool) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE users SET is_active = ? WHERE id = ?", (int(is_active), user_id)
            )

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._cursor() as cur:
            row = cur.execute(
                "SELECT id, username, email, role, is_active FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return UserRecord(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            role=row["role"],
            is_active=bool(row["is_active"]),
        )

    def register_client(
        self,
        client_id: str,
        client_name: str,
        scopes: Sequence[str],
        is_active: bool = True,
    ) -> None:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO oauth_clients (client_id, client_name, scopes, is_active, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (client_id, client_name, json.dumps(list(scopes)), int(is_active), _to_db(utcnow())),
            )

    def set_client_scopes(
        self, client_id: str, scopes: Sequence[str], apply_to_issued: bool = True
    ) -> None:
        """Change a client's scopes, by default also narrowing its outstanding tokens."""
        encoded = json.dumps(list(scopes))
        with self._cursor() as cur:
            cur.execute(
                "UPDATE oauth_clients SET scopes = ? WHERE client_id = ?",
                (encoded, client_id),
            )
            if apply_to_issued:
                cur.execute(
                    "UPDATE access_tokens SET scopes = ? WHERE client_id = ? AND is_revoked = 0",
                    (encoded, client_id),
                )

    def set_client_active(self, client_id: str, is_active: bool) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE oauth_clients SET is_active = ? WHERE client_id = ?",
                (int(is_active), client_id),
            )

    def get_client(self, client_id: str) -> Optional[ClientRecord]:
        with self._cursor() as cur:
            row = cur.execute(
                "SELECT client_id, client_name, scopes, is_active FROM oauth_clients "
                "WHERE client_id = ?",
                (client_id,),
            ).fetchone()
        if row is None:
            return None
        return ClientRecord(
            client_id=row["client_id"],
            client_name=row["client_name"],
            scopes=json.loads(row["scopes"] or "[]"),
            is_active=bool(row["is_active"]),
        )

    # issued credentials

    def insert_access_token(
        self,
        token_hash: str,
        client_id: str,
        scopes: Sequence[str],
        expires_at: datetime,
    ) -> int:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO access_tokens (token_hash, client_id, scopes, expires_at, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (token_hash, client_id, json.dumps(list(scopes)), _to_db(expires_at), _to_db(utcnow())),
            )
            return cur.lastrowid

    def insert_session(
        self,
        token_hash: str,
        user_id: int,
        expires_at: datetime,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO user_sessions "
                "(user_id, token_hash, device_info, ip_address, expires_at, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (user_id, token_hash, device_info, ip_address, _to_db(expires_at), _to_db(utcnow())),
            )
            return cur.lastrowid

    def find_access_tokens(self, token_hash: str) -> List[AccessTokenRow]:
        with self._cursor() as cur:
            rows = cur.execute(
                "SELECT t.id, t.token_hash, t.client_id, t.scopes, t.is_revoked, t.expires_at, "
                "c.client_name, c.is_active AS client_is_active "
                "FROM access_tokens t LEFT JOIN oauth_clients c ON t.client_id = c.client_id "
                "WHERE t.token_hash = ?",
                (token_hash,),
            ).fetchall()
        return [
            AccessTokenRow(
                id=row["id"],
                token_hash=row["token_hash"],
                client_id=row["client_id"],
                client_name=row["client_name"],
                client_is_active=bool(row["client_is_active"]),
                scopes=json.loads(row["scopes"] or "[]"),
                is_revoked=bool(row["is_revoked"]),
                expires_at=_from_db(row["expires_at"]),
            )
            for row in rows
        ]

    def find_sessions(self, token_hash: str) -> List[SessionRow]:
        with self._cursor() as cur:
            rows = cur.execute(
                "SELECT s.id, s.token_hash, s.user_id, s.is_revoked, s.expires_at, s.last_accessed, "
                "u.username, u.email, u.role, u.is_active AS user_is_active "
                "FROM user_sessions s JOIN users u ON s.user_id = u.id "
                "WHERE s.token_hash = ?",
                (token_hash,),
            ).fetchall()
        return [
            SessionRow(
                id=row["id"],
                token_hash=row["token_hash"],
                user_id=row["user_id"],
                username=row["username"],
                email=row["email"],
                role=row["role"],
                user_is_active=bool(row["user_is_active"]),
                is_revoked=bool(row["is_revoked"]),
                expires_at=_from_db(row["expires_at"]),
                last_accessed=_from_db(row["last_accessed"]),
            )
            for row in rows
        ]

    def touch_session(self, session_id: int, accessed_at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE user_sessions SET last_accessed = ? WHERE id = ?",
                (_to_db(accessed_at), session_id),
            )

    def revoke_token_hash(self, token_hash: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE access_tokens SET is_revoked = 1 WHERE token_hash = ? AND is_revoked = 0",
                (token_hash,),
            )
            revoked = cur.rowcount
            cur.execute(
                "UPDATE user_sessions SET is_revoked = 1 WHERE token_hash = ? AND is_revoked = 0",
                (token_hash,),
            )
            revoked += cur.rowcount
        return revoked > 0

    def revoke_user_sessions(self, user_id: int) -> int:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE user_sessions SET is_revoked = 1 WHERE user_id = ? AND is_revoked = 0",
                (user_id,),
            )
            return cur.rowcount
