"""Payout role checks.

The chat adapter describes the member as a Caller; these checks decide
whether that member may use a command. The ledger itself never checks
permissions.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from .errors import NotConfigured, Unauthorized
from .models import GuildConfig


@dataclass(frozen=True)
class Caller:
    """Member invoking a command, as seen by the chat adapter."""
    user_id: str
    tag: str = ""
    is_admin: bool = False
    role_ids: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def display(self) -> str:
        return self.tag or self.user_id


def require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise Unauthorized(caller.user_id)


def require_payout_role(config: Optional[GuildConfig], caller: Caller, guild_id: str) -> None:
    """Administrators always pass; everyone else needs the configured payout role."""
    if caller.is_admin:
        return

    if config is None or not config.payout_role_id:
        raise NotConfigured(guild_id)

    if config.payout_role_id not in caller.role_ids:
        raise Unauthorized(caller.user_id, required_role_id=config.payout_role_id)
