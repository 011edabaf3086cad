"""Database repository for Payout Ledger."""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from ..errors import StoreUnavailable
from ..models import (
    AccountRecord,
    BulkAddResult,
    Credential,
    GuildConfig,
    LedgerStats,
    ServiceType,
    TransactionRecord,
)
from .schema import schema_statements

logger = logging.getLogger(__name__)

# Pick and delete in one statement. SKIP LOCKED lets concurrent takers move
# on to another row instead of re-checking a row that was just deleted.
_TAKE_RANDOM_POSTGRES = """
    DELETE FROM accounts
    WHERE id = (
        SELECT id FROM accounts
        WHERE guild_id = %s AND service_type = %s
        ORDER BY RANDOM()
        LIMIT 1
        FOR UPDATE SKIP LOCKED
    )
    RETURNING id, guild_id, service_type, email, secret, created_at
"""

# SQLite holds the write lock for the whole BEGIN IMMEDIATE transaction.
_TAKE_RANDOM_SQLITE = """
    DELETE FROM accounts
    WHERE id = (
        SELECT id FROM accounts
        WHERE guild_id = %s AND service_type = %s
        ORDER BY RANDOM()
        LIMIT 1
    )
    RETURNING id, guild_id, service_type, email, secret, created_at
"""


def _to_datetime(value) -> Optional[datetime]:
    """Normalise driver timestamps (datetime or SQLite text) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class Repository:
    """Database access for guild settings, account stock and transactions."""

    def __init__(self, connector):
        self.connector = connector

    def connect(self):
        """Establish database connection."""
        try:
            self.connector.connect()
        except self.connector.errors as e:
            raise StoreUnavailable(f"Failed to connect to database: {e}") from e

    def close(self):
        """Close database connection."""
        self.connector.close()

    def _sql(self, query: str) -> str:
        if self.connector.placeholder == "%s":
            return query
        return query.replace("%s", self.connector.placeholder)

    @contextmanager
    def _transaction(self, action: str):
        try:
            with self.connector.transaction() as cur:
                yield cur
        except self.connector.errors as e:
            logger.error(f"Failed to {action}: {e}")
            raise StoreUnavailable(f"Failed to {action}: {e}") from e

    def initialize_schema(self):
        """Create tables and indexes if they do not exist yet."""
        with self._transaction("initialize schema") as cur:
            for statement in schema_statements(self.connector.dialect):
                cur.execute(statement)
        logger.info("Database schema is verified and up-to-date")

    # ------------------------------------------------------------------
    # Guild settings
    # ------------------------------------------------------------------

    def get_guild_config(self, guild_id: str) -> Optional[GuildConfig]:
        """Get settings for a guild."""
        query = """
            SELECT guild_id, payout_role, log_channel
            FROM guild_settings
            WHERE guild_id = %s
        """
        with self._transaction(f"get settings for guild {guild_id}") as cur:
            cur.execute(self._sql(query), (guild_id,))
            row = cur.fetchone()

        if not row:
            return None

        return GuildConfig(
            guild_id=row["guild_id"],
            payout_role_id=row["payout_role"],
            log_channel_id=row["log_channel"],
        )

    def upsert_guild_config(
        self,
        guild_id: str,
        payout_role_id: str,
        log_channel_id: Optional[str] = None,
    ):
        """Insert or update guild settings. A None log channel keeps the stored one."""
        query = """
            INSERT INTO guild_settings (guild_id, payout_role, log_channel)
            VALUES (%s, %s, %s)
            ON CONFLICT (guild_id)
            DO UPDATE SET
                payout_role = EXCLUDED.payout_role,
                log_channel = COALESCE(EXCLUDED.log_channel, guild_settings.log_channel)
        """
        with self._transaction(f"save settings for guild {guild_id}") as cur:
            cur.execute(self._sql(query), (guild_id, payout_role_id, log_channel_id))
        logger.info(f"Guild {guild_id}: payout role set to {payout_role_id}")

    def update_log_channel(self, guild_id: str, log_channel_id: str) -> int:
        """Set the log channel. Returns the number of rows updated (0 or 1)."""
        query = """
            UPDATE guild_settings
            SET log_channel = %s
            WHERE guild_id = %s
        """
        with self._transaction(f"set log channel for guild {guild_id}") as cur:
            cur.execute(self._sql(query), (log_channel_id, guild_id))
            return cur.rowcount

    # ------------------------------------------------------------------
    # Account stock
    # ------------------------------------------------------------------

    def add_accounts(
        self,
        guild_id: str,
        service_type: ServiceType,
        credentials: Iterable[Credential],
    ) -> BulkAddResult:
        """Insert accounts in one transaction, skipping ones already stocked."""
        query = """
            INSERT INTO accounts (guild_id, service_type, email, secret)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (guild_id, service_type, email) DO NOTHING
        """
        sql = self._sql(query)
        succeeded = 0
        processed = 0
        with self._transaction(f"add {service_type.value} stock for guild {guild_id}") as cur:
            for credential in credentials:
                cur.execute(sql, (guild_id, service_type.value, credential.email, credential.secret))
                processed += 1
                if cur.rowcount > 0:
                    succeeded += 1

        result = BulkAddResult(succeeded=succeeded, skipped=processed - succeeded)
        logger.info(
            f"Guild {guild_id}: added {result.succeeded} {service_type.value} account(s), "
            f"skipped {result.skipped} duplicate(s)"
        )
        return result

    def take_random_account(self, guild_id: str, service_type: ServiceType) -> Optional[AccountRecord]:
        """Remove one random account and return it, or None when out of stock."""
        if self.connector.dialect == "postgres":
            query = _TAKE_RANDOM_POSTGRES
        else:
            query = _TAKE_RANDOM_SQLITE

        with self._transaction(f"take {service_type.value} account for guild {guild_id}") as cur:
            cur.execute(self._sql(query), (guild_id, service_type.value))
            # Drain the statement so the delete is complete before COMMIT
            rows = cur.fetchall()

        if not rows:
            return None

        row = rows[0]
        return AccountRecord(
            id=row["id"],
            guild_id=row["guild_id"],
            service_type=ServiceType(row["service_type"]),
            email=row["email"],
            secret=row["secret"],
            created_at=_to_datetime(row["created_at"]),
        )

    def count_stock(self, guild_id: str) -> Dict[ServiceType, int]:
        """Count remaining accounts per service. Empty services are absent."""
        query = """
            SELECT service_type, COUNT(*) AS count
            FROM accounts
            WHERE guild_id = %s
            GROUP BY service_type
        """
        with self._transaction(f"count stock for guild {guild_id}") as cur:
            cur.execute(self._sql(query), (guild_id,))
            rows = cur.fetchall()

        counts = {}
        for row in rows:
            try:
                counts[ServiceType(row["service_type"])] = int(row["count"])
            except ValueError:
                logger.warning(f"Guild {guild_id}: ignoring unknown service type {row['service_type']!r}")
        return counts

    def clear_stock(self, guild_id: str, service_type: ServiceType) -> int:
        """Delete every account of one service. Returns the number removed."""
        query = """
            DELETE FROM accounts
            WHERE guild_id = %s AND service_type = %s
        """
        with self._transaction(f"clear {service_type.value} stock for guild {guild_id}") as cur:
            cur.execute(self._sql(query), (guild_id, service_type.value))
            deleted = cur.rowcount

        logger.info(f"Guild {guild_id}: cleared {deleted} {service_type.value} account(s)")
        return deleted

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def insert_transaction(
        self,
        guild_id: str,
        user_id: str,
        service_type: ServiceType,
        account_email: str,
    ):
        """Append an audit row for a dispensed account."""
        query = """
            INSERT INTO transactions (guild_id, user_id, service_type, account_email)
            VALUES (%s, %s, %s, %s)
        """
        with self._transaction(f"record transaction for guild {guild_id}") as cur:
            cur.execute(self._sql(query), (guild_id, user_id, service_type.value, account_email))

    def get_transactions(self, guild_id: str, limit: int = 50) -> List[TransactionRecord]:
        """Most recent transactions for a guild, newest first."""
        query = """
            SELECT guild_id, user_id, service_type, account_email, generated_at
            FROM transactions
            WHERE guild_id = %s
            ORDER BY id DESC
            LIMIT %s
        """
        with self._transaction(f"get transactions for guild {guild_id}") as cur:
            cur.execute(self._sql(query), (guild_id, limit))
            rows = cur.fetchall()

        return [
            TransactionRecord(
                guild_id=row["guild_id"],
                user_id=row["user_id"],
                service_type=ServiceType(row["service_type"]),
                account_email=row["account_email"],
                generated_at=_to_datetime(row["generated_at"]),
            )
            for row in rows
        ]

    def get_stats(self, guild_id: str) -> LedgerStats:
        """Total stock and total dispensed for a guild."""
        stock_query = "SELECT COUNT(*) AS count FROM accounts WHERE guild_id = %s"
        generated_query = "SELECT COUNT(*) AS count FROM transactions WHERE guild_id = %s"
        with self._transaction(f"get stats for guild {guild_id}") as cur:
            cur.execute(self._sql(stock_query), (guild_id,))
            total_stock = int(cur.fetchone()["count"])
            cur.execute(self._sql(generated_query), (guild_id,))
            total_generated = int(cur.fetchone()["count"])

        return LedgerStats(total_stock=total_stock, total_generated=total_generated)
