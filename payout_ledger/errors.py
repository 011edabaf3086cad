"""Error types raised by Payout Ledger."""

from typing import Optional


class LedgerError(Exception):
    """Base class for expected ledger failures."""


class NotConfigured(LedgerError):
    """Guild has no settings row or no payout role yet."""

    def __init__(self, guild_id: str):
        super().__init__(f"Guild {guild_id} is not configured; run setup first")
        self.guild_id = guild_id


class Unauthorized(LedgerError):
    """Caller lacks the capability the operation requires."""

    def __init__(self, user_id: str, required_role_id: Optional[str] = None):
        if required_role_id:
            message = f"User {user_id} needs role {required_role_id}"
        else:
            message = f"User {user_id} needs administrator permission"
        super().__init__(message)
        self.user_id = user_id
        self.required_role_id = required_role_id


class OutOfStock(LedgerError):
    """No account left for the requested service."""

    def __init__(self, guild_id: str, service_type):
        name = getattr(service_type, "display_name", service_type)
        super().__init__(f"{name} is out of stock in guild {guild_id}")
        self.guild_id = guild_id
        self.service_type = service_type


class StoreUnavailable(LedgerError):
    """The backing store could not be reached or a query failed."""


class DeliveryFailure(LedgerError):
    """The recipient could not be reached after a successful dispense."""


class CooldownActive(LedgerError):
    """Caller used the command too recently."""

    def __init__(self, retry_after: float):
        super().__init__(f"On cooldown for another {retry_after:.0f}s")
        self.retry_after = retry_after


class ImportRejected(LedgerError):
    """An uploaded stock file could not be accepted."""
