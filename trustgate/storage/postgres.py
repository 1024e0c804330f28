from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from trustgate.logging import get_logger
from trustgate.storage.errors import ConstraintViolation
from trustgate.storage.models import Account, Device, EmailChange, Recovery, as_utc

_ACCOUNT_COLUMNS = (
    "id, user_name, email, password_hash, name, phone, role, token, two_fa, created_at"
)

_CONSTRAINT_FIELDS = {
    "account_user_name_key": "user_name",
    "account_email_key": "email",
    "account_pkey": "id",
    "device_pkey": "id",
}


def _violation_field(exc: errors.UniqueViolation) -> str:
    constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
    return _CONSTRAINT_FIELDS.get(constraint, constraint or "unknown")


class PostgresStore:
    """Postgres-backed durable store for accounts and their auth artefacts."""

    required_tables = ("account", "device", "recovery", "email_change")

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _verify_required_schema(self) -> None:
        with self._connect() as conn:
            missing = []
            for table in self.required_tables:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing.append(table)
        if missing:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Apply trustgate/storage/schema.sql first.".format(
                    ", ".join(sorted(missing))
                )
            )
        self.logger.info("postgres_schema_verified", tables=len(self.required_tables))

    def close(self) -> None:
        self.pool.close()

    # row mappers
    @staticmethod
    def _account_from_row(row: Dict[str, Any]) -> Account:
        return Account(
            id=str(row["id"]),
            user_name=row["user_name"],
            email=row["email"],
            password_hash=row.get("password_hash"),
            name=row.get("name") or "",
            phone=row.get("phone") or "",
            role=int(row.get("role") or 0),
            token=row.get("token") or "",
            two_fa=bool(row.get("two_fa")),
            created=as_utc(row["created_at"]),
        )

    @staticmethod
    def _device_from_row(row: Dict[str, Any]) -> Device:
        return Device(
            id=str(row["id"]),
            account_id=str(row["account_id"]),
            code=row["code"],
            active=bool(row.get("active")),
            created=as_utc(row["created_at"]),
        )

    @staticmethod
    def _recovery_from_row(row: Dict[str, Any]) -> Recovery:
        return Recovery(
            id=str(row["id"]),
            account_id=str(row["account_id"]),
            email=row["email"],
            user_name=row["user_name"],
            created=as_utc(row["created_at"]),
        )

    @staticmethod
    def _email_change_from_row(row: Dict[str, Any]) -> EmailChange:
        return EmailChange(
            id=str(row["id"]),
            account_id=str(row["account_id"]),
            old_email=row["old_email"],
            new_email=row["new_email"],
            created=as_utc(row["created_at"]),
        )

    # accounts
    def _fetch_account(self, where: str, params: tuple) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM account WHERE {where} LIMIT 1", params
            ).fetchone()
        return self._account_from_row(row) if row else None

    def get_account(self, account_id: str) -> Optional[Account]:
        return self._fetch_account("id = %s", (account_id,))

    def get_account_by_token(self, token: str) -> Optional[Account]:
        if not token:
            return None
        return self._fetch_account("token = %s", (token,))

    def get_account_by_login(self, login: str) -> Optional[Account]:
        # a user name may look like another account's email; the user name wins
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT {_ACCOUNT_COLUMNS} FROM account
                WHERE email = %s OR user_name = %s
                ORDER BY (user_name = %s) DESC
                LIMIT 1
                """,
                (login, login, login),
            ).fetchone()
        return self._account_from_row(row) if row else None

    def get_account_by_email(self, email: str) -> Optional[Account]:
        return self._fetch_account("email = %s", (email,))

    def list_accounts(self, roles: Optional[Iterable[int]] = None) -> List[Account]:
        query = f"SELECT {_ACCOUNT_COLUMNS} FROM account"
        params: tuple = ()
        if roles is not None:
            query += " WHERE role = ANY(%s)"
            params = (list(roles),)
        query += " ORDER BY name ASC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._account_from_row(row) for row in rows]

    def find_account_conflict(
        self, user_name: Optional[str], email: Optional[str], exclude_id: Optional[str] = None
    ) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT user_name = %s AS name_match, email = %s AS email_match
                FROM account
                WHERE (user_name = %s OR email = %s)
                  AND (%s::text IS NULL OR id::text <> %s)
                ORDER BY (user_name = %s) DESC
                LIMIT 1
                """,
                (user_name, email, user_name, email, exclude_id, exclude_id, user_name),
            ).fetchone()
        if not row:
            return None
        return "user_name" if row.get("name_match") else "email"

    def create_account(self, account: Account) -> Account:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO account (id, user_name, email, password_hash, name, phone, role, token, two_fa, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        account.id,
                        account.user_name,
                        account.email,
                        account.password_hash,
                        account.name,
                        account.phone,
                        account.role,
                        account.token or None,
                        account.two_fa,
                        account.created,
                    ),
                )
        except errors.UniqueViolation as exc:
            field = _violation_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        return account

    def _update(self, query: str, params: tuple) -> int:
        with self._connect() as conn:
            cur = conn.execute(query, params)
            return cur.rowcount

    def update_account_token(self, account_id: str, token: str) -> None:
        self._update("UPDATE account SET token = %s WHERE id = %s", (token or None, account_id))

    def update_account_profile(self, account_id: str, name: str, phone: str) -> None:
        self._update(
            "UPDATE account SET name = %s, phone = %s WHERE id = %s",
            (name, phone, account_id),
        )

    def update_account_admin(self, account: Account) -> None:
        try:
            self._update(
                """
                UPDATE account
                SET name = %s, user_name = %s, email = %s, phone = %s, role = %s
                WHERE id = %s
                """,
                (
                    account.name,
                    account.user_name,
                    account.email,
                    account.phone,
                    account.role,
                    account.id,
                ),
            )
        except errors.UniqueViolation as exc:
            field = _violation_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field})

    def update_account_password(self, account_id: str, password_hash: str) -> None:
        self._update(
            "UPDATE account SET password_hash = %s WHERE id = %s", (password_hash, account_id)
        )

    def update_account_email(self, account_id: str, email: str) -> None:
        try:
            self._update("UPDATE account SET email = %s WHERE id = %s", (email, account_id))
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})

    def set_account_two_fa(self, account_id: str, enabled: bool) -> None:
        self._update("UPDATE account SET two_fa = %s WHERE id = %s", (enabled, account_id))

    def delete_account(self, account_id: str) -> bool:
        # device, recovery and email_change rows cascade
        return self._update("DELETE FROM account WHERE id = %s", (account_id,)) > 0

    # devices
    def get_device(self, device_id: str) -> Optional[Device]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, account_id, code, active, created_at FROM device WHERE id = %s",
                (device_id,),
            ).fetchone()
        return self._device_from_row(row) if row else None

    def create_device(self, device: Device) -> Device:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO device (id, account_id, code, active, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (device.id, device.account_id, device.code, device.active, device.created),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("device already exists", {"field": "id"})
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("account not found", {"account_id": device.account_id})
        return device

    def set_device_active(self, device_id: str) -> None:
        self._update("UPDATE device SET active = TRUE WHERE id = %s", (device_id,))

    def delete_account_devices(self, account_id: str) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "DELETE FROM device WHERE account_id = %s RETURNING id", (account_id,)
            ).fetchall()
        return [str(row["id"]) for row in rows]

    def delete_stale_devices(self, created_before: datetime) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "DELETE FROM device WHERE active = FALSE AND created_at < %s RETURNING id",
                (created_before,),
            ).fetchall()
        return [str(row["id"]) for row in rows]

    # recovery
    def get_recovery(self, recovery_id: str) -> Optional[Recovery]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, account_id, email, user_name, created_at FROM recovery WHERE id = %s",
                (recovery_id,),
            ).fetchone()
        return self._recovery_from_row(row) if row else None

    def create_recovery(self, recovery: Recovery) -> Recovery:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO recovery (id, account_id, email, user_name, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (
                    recovery.id,
                    recovery.account_id,
                    recovery.email,
                    recovery.user_name,
                    recovery.created,
                ),
            )
        return recovery

    def delete_recovery(self, recovery_id: str) -> bool:
        return self._update("DELETE FROM recovery WHERE id = %s", (recovery_id,)) > 0

    def delete_expired_recoveries(self, created_before: datetime) -> int:
        return self._update("DELETE FROM recovery WHERE created_at < %s", (created_before,))

    # email change
    def get_email_change(self, change_id: str) -> Optional[EmailChange]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, account_id, old_email, new_email, created_at
                FROM email_change WHERE id = %s
                """,
                (change_id,),
            ).fetchone()
        return self._email_change_from_row(row) if row else None

    def create_email_change(self, change: EmailChange) -> EmailChange:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO email_change (id, account_id, old_email, new_email, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (
                    change.id,
                    change.account_id,
                    change.old_email,
                    change.new_email,
                    change.created,
                ),
            )
        return change

    def delete_email_change(self, change_id: str) -> bool:
        return self._update("DELETE FROM email_change WHERE id = %s", (change_id,)) > 0

    def delete_expired_email_changes(self, created_before: datetime) -> int:
        return self._update(
            "DELETE FROM email_change WHERE created_at < %s", (created_before,)
        )
