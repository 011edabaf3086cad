"""Data models for Payout Ledger."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ServiceType(str, Enum):
    NFA = "nfa"
    FA = "fa"
    XBOXGP = "xboxgp"

    @property
    def display_name(self) -> str:
        return {
            ServiceType.NFA: "Minecraft Non Full Access (NFA)",
            ServiceType.FA: "Minecraft Full Access (FA)",
            ServiceType.XBOXGP: "Xbox GamePass",
        }[self]

    @property
    def emoji(self) -> str:
        return {
            ServiceType.NFA: "⛏️",
            ServiceType.FA: "💎",
            ServiceType.XBOXGP: "🎮",
        }[self]

    @property
    def needs_access_guide(self) -> bool:
        """Full access tiers ship with the access guide link."""
        return self in (ServiceType.FA, ServiceType.XBOXGP)

    @classmethod
    def parse(cls, value: str) -> "ServiceType":
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown service type '{value}' (expected one of: {valid})") from None


@dataclass
class GuildConfig:
    """Per-guild settings row."""
    guild_id: str
    payout_role_id: Optional[str] = None
    log_channel_id: Optional[str] = None


@dataclass(frozen=True)
class Credential:
    """One email/secret pair from an import."""
    email: str
    secret: str


@dataclass
class AccountRecord:
    """Stocked account from the accounts table."""
    id: int
    guild_id: str
    service_type: ServiceType
    email: str
    secret: str
    created_at: Optional[datetime] = None


@dataclass
class TransactionRecord:
    """Audit row written once per dispensed account."""
    guild_id: str
    user_id: str
    service_type: ServiceType
    account_email: str
    generated_at: Optional[datetime] = None


@dataclass
class BulkAddResult:
    """Outcome of a bulk import."""
    succeeded: int
    skipped: int

    @property
    def total(self) -> int:
        return self.succeeded + self.skipped


@dataclass
class LedgerStats:
    total_stock: int
    total_generated: int
