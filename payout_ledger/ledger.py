"""StockLedger - the async entry point to account stock and guild settings.

Every call goes straight to the database; nothing is cached in-process, so
the store is the only source of truth and the only serialisation point.
Repository work runs on a worker thread so the event loop keeps serving
other interactions while a query is in flight.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from .db.connection import create_connector
from .db.repository import Repository
from .errors import NotConfigured
from .models import (
    AccountRecord,
    BulkAddResult,
    Credential,
    GuildConfig,
    LedgerStats,
    ServiceType,
    TransactionRecord,
)

logger = logging.getLogger(__name__)


def _require(name: str, value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{name} must be a non-empty identifier")
    return str(value)


class StockLedger:
    """Owns account inventory and guild configuration.

    Guarantees that no two callers ever receive the same account: the pick
    and the delete in ``take_random`` are a single statement.
    """

    def __init__(self, repository: Optional[Repository] = None, database_url: Optional[str] = None):
        self.repo = repository or Repository(create_connector(database_url))

    async def initialize(self):
        """Connect and make sure the schema exists."""
        await asyncio.to_thread(self.repo.connect)
        await asyncio.to_thread(self.repo.initialize_schema)

    async def close(self):
        await asyncio.to_thread(self.repo.close)

    # ------------------------------------------------------------------
    # Guild configuration
    # ------------------------------------------------------------------

    async def configure(
        self,
        guild_id: str,
        payout_role_id: str,
        log_channel_id: Optional[str] = None,
    ) -> None:
        """Create or overwrite the guild's payout role (and log channel if given)."""
        guild_id = _require("guild_id", guild_id)
        payout_role_id = _require("payout_role_id", payout_role_id)
        if log_channel_id is not None:
            log_channel_id = _require("log_channel_id", log_channel_id)
        await asyncio.to_thread(self.repo.upsert_guild_config, guild_id, payout_role_id, log_channel_id)

    async def set_log_channel(self, guild_id: str, channel_id: str) -> None:
        """Point audit notifications at a channel.

        Raises:
            NotConfigured: the guild has not run setup yet.
        """
        guild_id = _require("guild_id", guild_id)
        channel_id = _require("channel_id", channel_id)
        updated = await asyncio.to_thread(self.repo.update_log_channel, guild_id, channel_id)
        if not updated:
            raise NotConfigured(guild_id)

    async def get_config(self, guild_id: str) -> Optional[GuildConfig]:
        return await asyncio.to_thread(self.repo.get_guild_config, guild_id)

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    async def bulk_add(
        self,
        guild_id: str,
        service_type: ServiceType,
        records: Iterable[Credential],
    ) -> BulkAddResult:
        """Add accounts atomically; duplicates are skipped, not errors.

        Any store failure rolls back the whole batch and raises
        StoreUnavailable.
        """
        records = list(records)
        return await asyncio.to_thread(self.repo.add_accounts, guild_id, ServiceType(service_type), records)

    async def take_random(self, guild_id: str, service_type: ServiceType) -> Optional[AccountRecord]:
        """Remove and return one random account, or None when out of stock."""
        return await asyncio.to_thread(self.repo.take_random_account, guild_id, ServiceType(service_type))

    async def count(self, guild_id: str) -> Dict[ServiceType, int]:
        """Stock per service. A missing key means zero."""
        return await asyncio.to_thread(self.repo.count_stock, guild_id)

    async def clear_all(self, guild_id: str, service_type: ServiceType) -> int:
        """Irreversibly delete all stock of one service. Returns the count removed."""
        return await asyncio.to_thread(self.repo.clear_stock, guild_id, ServiceType(service_type))

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    async def record_transaction(
        self,
        guild_id: str,
        user_id: str,
        service_type: ServiceType,
        account_email: str,
    ) -> None:
        """Append one audit row. Failure never puts the account back."""
        await asyncio.to_thread(
            self.repo.insert_transaction, guild_id, user_id, ServiceType(service_type), account_email
        )

    async def transactions(self, guild_id: str, limit: int = 50) -> List[TransactionRecord]:
        return await asyncio.to_thread(self.repo.get_transactions, guild_id, limit)

    async def stats(self, guild_id: str) -> LedgerStats:
        return await asyncio.to_thread(self.repo.get_stats, guild_id)
