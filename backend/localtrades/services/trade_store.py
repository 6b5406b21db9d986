import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar
from uuid import uuid4

from localtrades import config
from localtrades.models import (
    Enquiry,
    EnquiryStatus,
    TradeCategory,
    TradeProfile,
    User,
    UserRole,
    as_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProviderMutator = Callable[[TradeProfile], TradeProfile]
EnquiryBuilder = Callable[[TradeProfile], Tuple[Enquiry, TradeProfile]]
EnquiryMutator = Callable[[Enquiry, TradeProfile], Tuple[Enquiry, TradeProfile]]

# Columns a profile edit or counter mutation may write. id, user_id,
# created_at and version are owned by the store.
PROVIDER_WRITABLE_FIELDS = (
    "business_name",
    "description",
    "category",
    "postcode",
    "service_radius",
    "verified",
    "active",
    "subscription_active",
    "subscription_ends",
    "free_quota",
    "enquiries_received",
    "enquiries_responded",
    "enquiries_accepted",
    "average_response_time",
    "last_active",
)


class TradeStoreError(ValueError):
    """Base class for user-visible trade-store errors."""


class TradeStoreValidationError(TradeStoreError):
    pass


class TradeStoreNotFoundError(TradeStoreError):
    pass


class TradeStoreConflictError(TradeStoreError):
    pass


class TradeStorePermissionError(TradeStoreError):
    pass


class EnquiryGateRejectedError(TradeStoreError):
    """The trade exists but is not accepting enquiries right now."""


class _StaleProviderWrite(Exception):
    pass


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


def _db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _iso(value)
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (TradeCategory, EnquiryStatus, UserRole)):
        return value.value
    return value


@dataclass
class TradeStore:
    db_path: str
    atomic_attempts: int = field(default=config.ATOMIC_UPDATE_ATTEMPTS)

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        id TEXT PRIMARY KEY,
                        email TEXT NOT NULL UNIQUE,
                        name TEXT NOT NULL,
                        phone TEXT,
                        role TEXT NOT NULL,
                        password_hash TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS trade_profiles (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL UNIQUE,
                        business_name TEXT NOT NULL,
                        description TEXT NOT NULL,
                        category TEXT NOT NULL,
                        postcode TEXT NOT NULL,
                        service_radius INTEGER NOT NULL,
                        verified INTEGER NOT NULL DEFAULT 0,
                        active INTEGER NOT NULL DEFAULT 1,
                        subscription_active INTEGER NOT NULL DEFAULT 0,
                        subscription_ends TEXT,
                        free_quota INTEGER NOT NULL DEFAULT 3,
                        enquiries_received INTEGER NOT NULL DEFAULT 0,
                        enquiries_responded INTEGER NOT NULL DEFAULT 0,
                        enquiries_accepted INTEGER NOT NULL DEFAULT 0,
                        average_response_time INTEGER,
                        last_active TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        version INTEGER NOT NULL DEFAULT 0
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS enquiries (
                        id TEXT PRIMARY KEY,
                        trade_profile_id TEXT NOT NULL,
                        client_id TEXT NOT NULL,
                        client_name TEXT NOT NULL,
                        client_email TEXT NOT NULL,
                        client_phone TEXT NOT NULL,
                        client_postcode TEXT NOT NULL,
                        job_description TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'PENDING',
                        created_at TEXT NOT NULL,
                        responded_at TEXT,
                        acceptance_counted INTEGER NOT NULL DEFAULT 0
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_trade_profiles_search ON trade_profiles (active, verified, postcode)"
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_enquiries_trade ON enquiries (trade_profile_id, created_at)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_enquiries_client ON enquiries (client_id, created_at)")
                conn.commit()

    # Row mapping

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            phone=row["phone"],
            role=UserRole(row["role"]),
            created_at=_parse_ts(row["created_at"]),
        )

    def _row_to_profile(self, row: sqlite3.Row) -> TradeProfile:
        return TradeProfile(
            id=row["id"],
            user_id=row["user_id"],
            business_name=row["business_name"],
            description=row["description"],
            category=TradeCategory(row["category"]),
            postcode=row["postcode"],
            service_radius=int(row["service_radius"]),
            verified=bool(row["verified"]),
            active=bool(row["active"]),
            subscription_active=bool(row["subscription_active"]),
            subscription_ends=_parse_ts(row["subscription_ends"]),
            free_quota=int(row["free_quota"]),
            enquiries_received=int(row["enquiries_received"]),
            enquiries_responded=int(row["enquiries_responded"]),
            enquiries_accepted=int(row["enquiries_accepted"]),
            average_response_time=row["average_response_time"],
            last_active=_parse_ts(row["last_active"]),
            created_at=_parse_ts(row["created_at"]),
            version=int(row["version"]),
        )

    def _row_to_enquiry(self, row: sqlite3.Row) -> Enquiry:
        return Enquiry(
            id=row["id"],
            trade_profile_id=row["trade_profile_id"],
            client_id=row["client_id"],
            client_name=row["client_name"],
            client_email=row["client_email"],
            client_phone=row["client_phone"],
            client_postcode=row["client_postcode"],
            job_description=row["job_description"],
            status=EnquiryStatus(row["status"]),
            created_at=_parse_ts(row["created_at"]),
            responded_at=_parse_ts(row["responded_at"]),
            acceptance_counted=bool(row["acceptance_counted"]),
        )

    # Users

    def create_user(
        self,
        *,
        email: str,
        name: str,
        password_hash: str,
        role: UserRole,
        phone: Optional[str] = None,
        trade_profile: Optional[Dict[str, Any]] = None,
    ) -> Tuple[User, Optional[TradeProfile]]:
        now = utc_now()
        user = User(
            id=f"usr_{uuid4().hex[:10]}",
            email=email.strip().lower(),
            name=name.strip(),
            phone=(phone or "").strip() or None,
            role=role,
            created_at=now,
        )
        profile: Optional[TradeProfile] = None
        if trade_profile is not None:
            profile = TradeProfile(
                id=f"trd_{uuid4().hex[:10]}",
                user_id=user.id,
                free_quota=config.DEFAULT_FREE_QUOTA,
                last_active=now,
                created_at=now,
                **trade_profile,
            )

        with self._lock:
            with self._connect() as conn:
                existing = conn.execute("SELECT id FROM users WHERE email = ?", (user.email,)).fetchone()
                if existing:
                    raise TradeStoreConflictError("Email already registered")
                conn.execute(
                    """
                    INSERT INTO users (id, email, name, phone, role, password_hash, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (user.id, user.email, user.name, user.phone, user.role.value, password_hash, _iso(now)),
                )
                if profile is not None:
                    self._insert_profile(conn, profile)
                conn.commit()
        return user, profile

    def _insert_profile(self, conn: sqlite3.Connection, profile: TradeProfile) -> None:
        columns = ("id", "user_id", *PROVIDER_WRITABLE_FIELDS, "created_at", "version")
        values = [_db_value(getattr(profile, column)) for column in columns]
        placeholders = ", ".join("?" for _ in columns)
        conn.execute(
            f"INSERT INTO trade_profiles ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_credentials(self, email: str) -> Optional[Tuple[User, str]]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email.strip().lower(),)).fetchone()
        if not row:
            return None
        return self._row_to_user(row), str(row["password_hash"])

    def get_users_by_ids(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = sorted({user_id for user_id in user_ids if user_id})
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(f"SELECT * FROM users WHERE id IN ({placeholders})", ids).fetchall()
        return {str(row["id"]): self._row_to_user(row) for row in rows}

    # Trade profiles

    def get_provider_by_id(self, provider_id: str) -> Optional[TradeProfile]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM trade_profiles WHERE id = ?", (provider_id,)).fetchone()
        return self._row_to_profile(row) if row else None

    def get_provider_by_user_id(self, user_id: str) -> Optional[TradeProfile]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM trade_profiles WHERE user_id = ?", (user_id,)).fetchone()
        return self._row_to_profile(row) if row else None

    def list_providers(self) -> List[TradeProfile]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM trade_profiles ORDER BY created_at DESC").fetchall()
        return [self._row_to_profile(row) for row in rows]

    def find_providers_by_area_and_category(
        self,
        area: str,
        category: Optional[TradeCategory] = None,
        exact_postcode: Optional[str] = None,
    ) -> List[TradeProfile]:
        """Searchable profiles whose postcode starts with ``area`` or equals ``exact_postcode``.

        Only active and verified profiles are returned, newest first.
        """
        sql = """
            SELECT * FROM trade_profiles
            WHERE active = 1
              AND verified = 1
              AND (substr(postcode, 1, length(?)) = ? OR postcode = ?)
        """
        params: List[Any] = [area, area, exact_postcode or area]
        if category is not None:
            sql += " AND category = ?"
            params.append(category.value)
        sql += " ORDER BY created_at DESC"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_profile(row) for row in rows]

    def _load_provider(self, conn: sqlite3.Connection, provider_id: str) -> TradeProfile:
        row = conn.execute("SELECT * FROM trade_profiles WHERE id = ?", (provider_id,)).fetchone()
        if not row:
            raise TradeStoreNotFoundError("Trade not found")
        return self._row_to_profile(row)

    def _write_provider(self, conn: sqlite3.Connection, provider: TradeProfile, expected_version: int) -> TradeProfile:
        assignments = ", ".join(f"{column} = ?" for column in PROVIDER_WRITABLE_FIELDS)
        values = [_db_value(getattr(provider, column)) for column in PROVIDER_WRITABLE_FIELDS]
        cursor = conn.execute(
            f"UPDATE trade_profiles SET {assignments}, version = ? WHERE id = ? AND version = ?",
            (*values, expected_version + 1, provider.id, expected_version),
        )
        if cursor.rowcount != 1:
            raise _StaleProviderWrite(provider.id)
        return provider.model_copy(update={"version": expected_version + 1})

    def _run_atomic(self, description: str, operation: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``operation`` in one transaction, retrying on stale provider writes.

        A stale write means another writer committed a new version of the
        profile between our read and our conditional update. The whole
        transaction is rolled back and re-run from a fresh read.
        """
        for attempt in range(1, self.atomic_attempts + 1):
            try:
                with self._lock:
                    with self._connect() as conn:
                        result = operation(conn)
                        conn.commit()
                        return result
            except _StaleProviderWrite as exc:
                logger.warning(
                    "Optimistic conflict on trade %s during %s (attempt %d/%d)",
                    exc,
                    description,
                    attempt,
                    self.atomic_attempts,
                )
        raise TradeStoreConflictError(f"Concurrent update conflict during {description}, please retry")

    def atomic_update_provider(self, provider_id: str, mutator: ProviderMutator) -> TradeProfile:
        def operation(conn: sqlite3.Connection) -> TradeProfile:
            current = self._load_provider(conn, provider_id)
            updated = mutator(current)
            return self._write_provider(conn, updated, current.version)

        return self._run_atomic("provider update", operation)

    def update_provider(self, provider_id: str, fields: Dict[str, Any]) -> TradeProfile:
        unknown = set(fields) - set(PROVIDER_WRITABLE_FIELDS)
        if unknown:
            raise TradeStoreValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        return self.atomic_update_provider(provider_id, lambda current: current.model_copy(update=fields))

    # Enquiries

    def get_enquiry_by_id(self, enquiry_id: str) -> Optional[Enquiry]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM enquiries WHERE id = ?", (enquiry_id,)).fetchone()
        return self._row_to_enquiry(row) if row else None

    def list_enquiries_for_provider(self, provider_id: str) -> List[Enquiry]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM enquiries WHERE trade_profile_id = ? ORDER BY created_at DESC",
                (provider_id,),
            ).fetchall()
        return [self._row_to_enquiry(row) for row in rows]

    def list_enquiries_for_client(self, client_id: str) -> List[Enquiry]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM enquiries WHERE client_id = ? ORDER BY created_at DESC",
                (client_id,),
            ).fetchall()
        return [self._row_to_enquiry(row) for row in rows]

    def create_enquiry_atomic(self, provider_id: str, build: EnquiryBuilder) -> Tuple[Enquiry, TradeProfile]:
        """Insert the enquiry built from the current profile and write the profile back, atomically."""

        def operation(conn: sqlite3.Connection) -> Tuple[Enquiry, TradeProfile]:
            current = self._load_provider(conn, provider_id)
            enquiry, updated = build(current)
            written = self._write_provider(conn, updated, current.version)
            conn.execute(
                """
                INSERT INTO enquiries (
                    id, trade_profile_id, client_id, client_name, client_email, client_phone,
                    client_postcode, job_description, status, created_at, responded_at, acceptance_counted
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    enquiry.id,
                    enquiry.trade_profile_id,
                    enquiry.client_id,
                    enquiry.client_name,
                    enquiry.client_email,
                    enquiry.client_phone,
                    enquiry.client_postcode,
                    enquiry.job_description,
                    enquiry.status.value,
                    _iso(enquiry.created_at),
                    _iso(enquiry.responded_at),
                    1 if enquiry.acceptance_counted else 0,
                ),
            )
            return enquiry, written

        return self._run_atomic("enquiry create", operation)

    def transition_enquiry(self, enquiry_id: str, mutator: EnquiryMutator) -> Tuple[Enquiry, TradeProfile]:
        """Apply ``mutator`` to an enquiry and its trade profile and persist both together."""

        def operation(conn: sqlite3.Connection) -> Tuple[Enquiry, TradeProfile]:
            row = conn.execute("SELECT * FROM enquiries WHERE id = ?", (enquiry_id,)).fetchone()
            if not row:
                raise TradeStoreNotFoundError("Enquiry not found")
            enquiry = self._row_to_enquiry(row)
            current = self._load_provider(conn, enquiry.trade_profile_id)
            updated_enquiry, updated_provider = mutator(enquiry, current)
            written = self._write_provider(conn, updated_provider, current.version)
            conn.execute(
                "UPDATE enquiries SET status = ?, responded_at = ?, acceptance_counted = ? WHERE id = ?",
                (
                    updated_enquiry.status.value,
                    _iso(updated_enquiry.responded_at),
                    1 if updated_enquiry.acceptance_counted else 0,
                    enquiry_id,
                ),
            )
            return updated_enquiry, written

        return self._run_atomic("enquiry status update", operation)


trade_store = TradeStore(db_path=config.TRADES_DB_PATH)
