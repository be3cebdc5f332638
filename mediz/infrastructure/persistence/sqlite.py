import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ...domain.models import (
    ENTITLED_STATUSES,
    EXTERNAL_ID_KINDS,
    Admin,
    Plan,
    PlanAttributes,
    PlanInterval,
    Subscription,
    User,
)
from ...domain.models.subscription import normalize_status
from ...domain.periods import ensure_utc
from ...domain.ports.persistence import PersistenceGateway

# Entitlement rendered as SQL. Statuses are stored lower-cased, so the
# (status, current_period_end) index serves this filter.
_ENTITLEMENT_FILTER = (
    "s.status IN ({}) AND s.current_period_end >= ?".format(
        ", ".join("?" for _ in ENTITLED_STATUSES)
    )
)

_SUBSCRIPTION_UPDATABLE = ("user_id", "plan_id", "status", "current_period_start", "current_period_end")


def _ts(value: datetime) -> str:
    # Fixed-width UTC text so that string comparison in SQL orders instants.
    return ensure_utc(value).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return ensure_utc(datetime.fromisoformat(value)) if value else None


def _entitlement_params(as_of: datetime) -> tuple:
    return (*ENTITLED_STATUSES, _ts(as_of))


class SQLitePersistence(PersistenceGateway):
    """SQLite-backed implementation of the persistence gateway."""

    def __init__(self, path: Union[Path, str]) -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        with self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT,
                    stripe_customer_id TEXT UNIQUE,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS admins (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS plans (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    interval TEXT NOT NULL CHECK (interval IN ('DAY', 'WEEK', 'MONTH', 'YEAR')),
                    interval_count INTEGER NOT NULL DEFAULT 1 CHECK (interval_count >= 1),
                    amount INTEGER NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    trial_period_days INTEGER,
                    stripe_price_id TEXT UNIQUE,
                    hotmart_offer_key TEXT UNIQUE,
                    hotmart_id TEXT UNIQUE,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (
                        stripe_price_id IS NOT NULL
                        OR hotmart_offer_key IS NOT NULL
                        OR hotmart_id IS NOT NULL
                    )
                );

                CREATE TABLE IF NOT EXISTS subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    plan_id INTEGER NOT NULL,
                    external_subscription_id TEXT NOT NULL UNIQUE,
                    provider TEXT NOT NULL,
                    status TEXT NOT NULL,
                    current_period_start TEXT NOT NULL,
                    current_period_end TEXT NOT NULL,
                    last_event_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY(plan_id) REFERENCES plans(id)
                );

                CREATE INDEX IF NOT EXISTS idx_subscriptions_user_id
                    ON subscriptions(user_id);

                CREATE INDEX IF NOT EXISTS idx_subscriptions_status_period_end
                    ON subscriptions(status, current_period_end);
                """
            )

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _now() -> str:
        return _ts(datetime.now(timezone.utc))

    # PlanRepository API -----------------------------------------------------
    def upsert_plan(self, id_kind: str, external_id: str, attributes: PlanAttributes) -> Plan:
        if id_kind not in EXTERNAL_ID_KINDS:
            raise ValueError(f"Unknown plan identifier kind: {id_kind}")
        now = self._now()
        with self._lock, self._conn:
            row = self._find_plan_row(external_id)
            ids: Dict[str, Optional[str]] = {kind: None for kind in EXTERNAL_ID_KINDS}
            if row is not None:
                # The identifier moves to id_kind; other kinds keep their values.
                ids.update(
                    {kind: row[kind] for kind in EXTERNAL_ID_KINDS if row[kind] != external_id}
                )
            ids.update(attributes.extra_ids)
            ids[id_kind] = external_id
            values = (
                attributes.name,
                attributes.currency,
                attributes.interval.value,
                attributes.interval_count,
                attributes.amount,
                int(attributes.active),
                attributes.trial_period_days,
                ids["stripe_price_id"],
                ids["hotmart_offer_key"],
                ids["hotmart_id"],
                now,
            )
            if row is None:
                cur = self._conn.execute(
                    """
                    INSERT INTO plans (
                        name, currency, interval, interval_count, amount, active,
                        trial_period_days, stripe_price_id, hotmart_offer_key, hotmart_id,
                        updated_at, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (*values, now),
                )
                plan_id = cur.lastrowid
            else:
                plan_id = row["id"]
                self._conn.execute(
                    """
                    UPDATE plans SET
                        name = ?,
                        currency = ?,
                        interval = ?,
                        interval_count = ?,
                        amount = ?,
                        active = ?,
                        trial_period_days = ?,
                        stripe_price_id = ?,
                        hotmart_offer_key = ?,
                        hotmart_id = ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (*values, plan_id),
                )
            cur = self._conn.execute("SELECT * FROM plans WHERE id = ?", (plan_id,))
            row = cur.fetchone()
        if not row:
            raise RuntimeError("Failed to persist plan.")
        return self._row_to_plan(row)

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM plans WHERE id = ?", (plan_id,))
            row = cur.fetchone()
        return self._row_to_plan(row) if row else None

    def find_plan_by_external_id(self, external_id: str) -> Optional[Plan]:
        with self._lock:
            row = self._find_plan_row(external_id)
        return self._row_to_plan(row) if row else None

    def _find_plan_row(self, external_id: str) -> Optional[sqlite3.Row]:
        # Exact, case-sensitive match; SQLite's default = collation is BINARY.
        for kind in EXTERNAL_ID_KINDS:
            cur = self._conn.execute(f"SELECT * FROM plans WHERE {kind} = ?", (external_id,))
            row = cur.fetchone()
            if row:
                return row
        return None

    def list_plans(self, active_only: bool = False) -> List[Plan]:
        query = "SELECT * FROM plans"
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY currency ASC, interval ASC, amount ASC"
        with self._lock:
            cur = self._conn.execute(query)
            rows = cur.fetchall()
        return [self._row_to_plan(row) for row in rows]

    def set_plan_active(self, plan_id: int, active: bool) -> Plan:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE plans SET active = ?, updated_at = ? WHERE id = ?",
                (int(active), self._now(), plan_id),
            )
            cur = self._conn.execute("SELECT * FROM plans WHERE id = ?", (plan_id,))
            row = cur.fetchone()
        if not row:
            raise ValueError(f"Plano {plan_id} não encontrado.")
        return self._row_to_plan(row)

    # SubscriptionRepository API ---------------------------------------------
    def upsert_subscription(
        self,
        external_subscription_id: str,
        *,
        user_id: int,
        plan_id: int,
        status: str,
        current_period_start: datetime,
        current_period_end: datetime,
        provider: str,
        event_at: Optional[datetime] = None,
    ) -> tuple[Subscription, bool]:
        now = self._now()
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO subscriptions (
                    user_id, plan_id, external_subscription_id, provider, status,
                    current_period_start, current_period_end, last_event_at,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(external_subscription_id) DO UPDATE SET
                    plan_id = excluded.plan_id,
                    status = excluded.status,
                    current_period_start = excluded.current_period_start,
                    current_period_end = excluded.current_period_end,
                    last_event_at = COALESCE(excluded.last_event_at, subscriptions.last_event_at),
                    updated_at = excluded.updated_at
                WHERE excluded.last_event_at IS NULL
                    OR subscriptions.last_event_at IS NULL
                    OR excluded.last_event_at >= subscriptions.last_event_at
                """,
                (
                    user_id,
                    plan_id,
                    external_subscription_id,
                    provider,
                    normalize_status(status),
                    _ts(current_period_start),
                    _ts(current_period_end),
                    _ts(event_at) if event_at else None,
                    now,
                    now,
                ),
            )
            written = cur.rowcount > 0
            cur = self._conn.execute(
                "SELECT * FROM subscriptions WHERE external_subscription_id = ?",
                (external_subscription_id,),
            )
            row = cur.fetchone()
        if not row:
            raise RuntimeError("Failed to persist subscription.")
        return self._row_to_subscription(row), written

    def update_subscription_status(
        self,
        external_subscription_id: str,
        status: str,
        event_at: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        event_ts = _ts(event_at) if event_at else None
        with self._lock, self._conn:
            self._conn.execute(
                """
                UPDATE subscriptions
                SET status = ?,
                    last_event_at = COALESCE(?, last_event_at),
                    updated_at = ?
                WHERE external_subscription_id = ?
                    AND (? IS NULL OR last_event_at IS NULL OR ? >= last_event_at)
                """,
                (
                    normalize_status(status),
                    event_ts,
                    self._now(),
                    external_subscription_id,
                    event_ts,
                    event_ts,
                ),
            )
            cur = self._conn.execute(
                "SELECT * FROM subscriptions WHERE external_subscription_id = ?",
                (external_subscription_id,),
            )
            row = cur.fetchone()
        return self._row_to_subscription(row) if row else None

    def create_subscription(
        self,
        external_subscription_id: str,
        *,
        user_id: int,
        plan_id: int,
        status: str,
        current_period_start: datetime,
        current_period_end: datetime,
        provider: str,
    ) -> Subscription:
        now = self._now()
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO subscriptions (
                    user_id, plan_id, external_subscription_id, provider, status,
                    current_period_start, current_period_end, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    plan_id,
                    external_subscription_id,
                    provider,
                    normalize_status(status),
                    _ts(current_period_start),
                    _ts(current_period_end),
                    now,
                    now,
                ),
            )
            subscription_id = cur.lastrowid
            cur = self._conn.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
            row = cur.fetchone()
        if not row:
            raise RuntimeError("Failed to persist subscription.")
        return self._row_to_subscription(row)

    def update_subscription(self, subscription_id: int, **fields: Any) -> Subscription:
        unknown = set(fields) - set(_SUBSCRIPTION_UPDATABLE)
        if unknown:
            raise ValueError(f"Campos não suportados: {sorted(unknown)}")
        updates = []
        params: List[Any] = []
        for column in _SUBSCRIPTION_UPDATABLE:
            value = fields.get(column)
            if value is None:
                continue
            if isinstance(value, datetime):
                value = _ts(value)
            elif column == "status":
                value = normalize_status(value)
            updates.append(f"{column} = ?")
            params.append(value)

        if updates:
            updates.append("updated_at = ?")
            params.append(self._now())
            params.append(subscription_id)
            statement = f"UPDATE subscriptions SET {', '.join(updates)} WHERE id = ?"
            with self._lock, self._conn:
                self._conn.execute(statement, params)
        with self._lock:
            cur = self._conn.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
            row = cur.fetchone()
        if not row:
            raise ValueError(f"Assinatura {subscription_id} não encontrada.")
        return self._row_to_subscription(row)

    def delete_subscription(self, subscription_id: int) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM subscriptions WHERE id = ?", (subscription_id,))
        return cur.rowcount > 0

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
            row = cur.fetchone()
        return self._row_to_subscription(row) if row else None

    def get_subscription_by_external_id(self, external_subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT * FROM subscriptions WHERE external_subscription_id = ?",
                (external_subscription_id,),
            )
            row = cur.fetchone()
        return self._row_to_subscription(row) if row else None

    def list_subscriptions_for_user(self, user_id: int) -> List[Subscription]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT * FROM subscriptions WHERE user_id = ? ORDER BY created_at DESC, id DESC",
                (user_id,),
            )
            rows = cur.fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def list_all_subscription_ids(self) -> List[int]:
        with self._lock:
            cur = self._conn.execute("SELECT id FROM subscriptions ORDER BY id ASC")
            rows = cur.fetchall()
        return [row["id"] for row in rows]

    def list_entitled_subscriptions(
        self, as_of: datetime, user_id: Optional[int] = None
    ) -> List[Subscription]:
        query = f"SELECT s.* FROM subscriptions s WHERE {_ENTITLEMENT_FILTER}"
        params: List[Any] = list(_entitlement_params(as_of))
        if user_id is not None:
            query += " AND s.user_id = ?"
            params.append(user_id)
        query += " ORDER BY s.current_period_end DESC"
        with self._lock:
            cur = self._conn.execute(query, params)
            rows = cur.fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def count_entitled_users(self, as_of: datetime) -> int:
        with self._lock:
            cur = self._conn.execute(
                f"SELECT COUNT(DISTINCT s.user_id) FROM subscriptions s WHERE {_ENTITLEMENT_FILTER}",
                _entitlement_params(as_of),
            )
            row = cur.fetchone()
        return int(row[0])

    def entitlement_breakdown(self, as_of: datetime) -> Dict[str, int]:
        params = _entitlement_params(as_of)
        with self._lock:
            cur = self._conn.execute(
                f"""
                SELECT COUNT(DISTINCT s.user_id) AS premium_users,
                       COUNT(*) AS entitled_subscriptions
                FROM subscriptions s
                WHERE {_ENTITLEMENT_FILTER}
                """,
                params,
            )
            totals = cur.fetchone()
            cur = self._conn.execute(
                f"""
                SELECT COUNT(*) FROM (
                    SELECT s.user_id FROM subscriptions s
                    WHERE {_ENTITLEMENT_FILTER}
                    GROUP BY s.user_id
                    HAVING COUNT(*) > 1
                )
                """,
                params,
            )
            multiple = cur.fetchone()
        return {
            "premium_users": int(totals["premium_users"]),
            "entitled_subscriptions": int(totals["entitled_subscriptions"]),
            "users_with_multiple": int(multiple[0]),
        }

    def list_entitled_user_ids(self, as_of: datetime, min_rows: int = 1) -> List[int]:
        with self._lock:
            cur = self._conn.execute(
                f"""
                SELECT s.user_id FROM subscriptions s
                WHERE {_ENTITLEMENT_FILTER}
                GROUP BY s.user_id
                HAVING COUNT(*) >= ?
                ORDER BY s.user_id ASC
                """,
                (*_entitlement_params(as_of), min_rows),
            )
            rows = cur.fetchall()
        return [row["user_id"] for row in rows]

    def set_period_end(self, subscription_id: int, current_period_end: datetime) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE subscriptions SET current_period_end = ?, updated_at = ? WHERE id = ?",
                (_ts(current_period_end), self._now(), subscription_id),
            )

    # UserDirectory API ------------------------------------------------------
    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def find_user_by_stripe_customer(self, customer_id: str) -> Optional[User]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT * FROM users WHERE stripe_customer_id = ?", (customer_id,)
            )
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
            )
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def create_user(
        self,
        email: str,
        name: Optional[str] = None,
        stripe_customer_id: Optional[str] = None,
    ) -> User:
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO users (email, name, stripe_customer_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (email.strip().lower(), name, stripe_customer_id, self._now()),
            )
            user_id = cur.lastrowid
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        if not row:
            raise RuntimeError("Failed to persist user.")
        return self._row_to_user(row)

    # AdminRepository API ----------------------------------------------------
    def get_admin_by_email(self, email: str) -> Optional[Admin]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM admins WHERE email = ?", (email,))
            row = cur.fetchone()
        return self._row_to_admin(row) if row else None

    def get_admin_by_id(self, admin_id: int) -> Optional[Admin]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM admins WHERE id = ?", (admin_id,))
            row = cur.fetchone()
        return self._row_to_admin(row) if row else None

    def create_admin(self, email: str, password_hash: str) -> Admin:
        now = self._now()
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO admins (email, password_hash, is_active, created_at, updated_at)
                VALUES (?, ?, 1, ?, ?)
                """,
                (email, password_hash, now, now),
            )
            admin_id = cur.lastrowid
            cur = self._conn.execute("SELECT * FROM admins WHERE id = ?", (admin_id,))
            row = cur.fetchone()
        if not row:
            raise RuntimeError("Failed to persist admin.")
        return self._row_to_admin(row)

    # Helpers ----------------------------------------------------------------
    @staticmethod
    def _row_to_plan(row: sqlite3.Row) -> Plan:
        return Plan(
            id=row["id"],
            name=row["name"],
            currency=row["currency"],
            interval=PlanInterval(row["interval"]),
            interval_count=row["interval_count"],
            amount=row["amount"],
            active=bool(row["active"]),
            stripe_price_id=row["stripe_price_id"],
            hotmart_offer_key=row["hotmart_offer_key"],
            hotmart_id=row["hotmart_id"],
            trial_period_days=row["trial_period_days"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            user_id=row["user_id"],
            plan_id=row["plan_id"],
            external_subscription_id=row["external_subscription_id"],
            provider=row["provider"],
            status=row["status"],
            current_period_start=_parse_ts(row["current_period_start"]),
            current_period_end=_parse_ts(row["current_period_end"]),
            last_event_at=_parse_ts(row["last_event_at"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            stripe_customer_id=row["stripe_customer_id"],
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_admin(row: sqlite3.Row) -> Admin:
        return Admin(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            is_active=bool(row["is_active"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )
