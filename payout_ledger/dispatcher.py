"""Command dispatch for the payout bot.

Each command is a pydantic model tagged by ``kind``. The route table that
maps a kind to its handler and required access level is built once in
``Dispatcher.__init__``. Handlers talk to the ledger and return an Outcome.
Rendering the outcome (reply, DM, embed) is the chat adapter's job; the
only presentation calls made from here go through the Presenter protocol.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Awaitable, Callable, Dict, Literal, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from .config import settings
from .cooldown import CooldownTracker
from .errors import (
    CooldownActive,
    DeliveryFailure,
    ImportRejected,
    NotConfigured,
    OutOfStock,
    StoreUnavailable,
    Unauthorized,
)
from .importer import fetch_attachment, parse_credentials
from .ledger import StockLedger
from .models import AccountRecord, ServiceType
from .permissions import Caller, require_admin, require_payout_role

logger = logging.getLogger(__name__)


class CommandKind(str, Enum):
    SETUP = "setup"
    SET_LOG_CHANNEL = "set_log_channel"
    ADD_STOCK_BULK = "add_stock_bulk"
    GEN = "gen"
    STOCK = "stock"
    STATS = "stats"
    CLEAR_STOCK = "clear_stock"


class Access(str, Enum):
    ADMIN = "admin"
    PAYOUT = "payout"


class OutcomeStatus(str, Enum):
    OK = "ok"
    CONFIRM_REQUIRED = "confirm_required"
    NOT_CONFIGURED = "not_configured"
    UNAUTHORIZED = "unauthorized"
    COOLDOWN = "cooldown"
    OUT_OF_STOCK = "out_of_stock"
    INVALID_INPUT = "invalid_input"
    DELIVERY_FAILED = "delivery_failed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Command inputs
# ---------------------------------------------------------------------------

class _CommandInput(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    @property
    def command_kind(self) -> CommandKind:
        return CommandKind(self.kind)


class SetupCommand(_CommandInput):
    kind: Literal["setup"] = "setup"
    payout_role_id: str = Field(min_length=1)
    log_channel_id: Optional[str] = Field(default=None, min_length=1)


class SetLogChannelCommand(_CommandInput):
    kind: Literal["set_log_channel"] = "set_log_channel"
    channel_id: str = Field(min_length=1)


class AddStockBulkCommand(_CommandInput):
    """Stock comes either inline (``text``) or as an uploaded file."""
    kind: Literal["add_stock_bulk"] = "add_stock_bulk"
    service: ServiceType
    text: Optional[str] = None
    attachment_url: Optional[str] = None
    filename: Optional[str] = None

    @model_validator(mode="after")
    def _one_source(self):
        if (self.text is None) == (self.attachment_url is None):
            raise ValueError("provide exactly one of text or attachment_url")
        if self.attachment_url is not None and not self.filename:
            raise ValueError("filename is required with attachment_url")
        return self


class GenCommand(_CommandInput):
    kind: Literal["gen"] = "gen"
    service: ServiceType


class StockCommand(_CommandInput):
    kind: Literal["stock"] = "stock"


class StatsCommand(_CommandInput):
    kind: Literal["stats"] = "stats"


class ClearStockCommand(_CommandInput):
    kind: Literal["clear_stock"] = "clear_stock"
    service: ServiceType
    confirmed: bool = False


Command = Annotated[
    Union[
        SetupCommand,
        SetLogChannelCommand,
        AddStockBulkCommand,
        GenCommand,
        StockCommand,
        StatsCommand,
        ClearStockCommand,
    ],
    Field(discriminator="kind"),
]

_command_adapter = TypeAdapter(Command)


def parse_command(payload: Dict[str, Any]):
    """Validate a raw payload from the chat adapter into a command model."""
    return _command_adapter.validate_python(payload)


# ---------------------------------------------------------------------------
# Results and presentation
# ---------------------------------------------------------------------------

@dataclass
class Outcome:
    """What happened, for the adapter to render."""
    kind: Optional[CommandKind]
    status: OutcomeStatus
    data: Dict[str, Any] = field(default_factory=dict)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK


@dataclass
class LogEvent:
    """Audit notification for a guild's log channel."""
    title: str
    description: str
    fields: Dict[str, str] = field(default_factory=dict)


class Presenter(Protocol):
    async def deliver_account(
        self,
        caller: Caller,
        guild_id: str,
        account: AccountRecord,
        guide_url: Optional[str],
    ) -> None:
        """Send the account privately. Raise DeliveryFailure when the user can't be reached."""
        ...

    async def send_log(self, guild_id: str, channel_id: str, event: LogEvent) -> None:
        ...


@dataclass(frozen=True)
class _Route:
    handler: Callable[..., Awaitable[Outcome]]
    access: Access


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class Dispatcher:
    """Routes commands to ledger operations behind permission and cooldown checks."""

    def __init__(
        self,
        ledger: StockLedger,
        presenter: Presenter,
        cooldowns: Optional[CooldownTracker] = None,
        guide_url: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ledger = ledger
        self.presenter = presenter
        self.cooldowns = cooldowns if cooldowns is not None else CooldownTracker()
        self.guide_url = guide_url if guide_url is not None else settings.full_access_guide_url
        self._clock = clock
        self._started_at = clock()
        self._routes: Dict[CommandKind, _Route] = {
            CommandKind.SETUP: _Route(self._setup, Access.ADMIN),
            CommandKind.SET_LOG_CHANNEL: _Route(self._set_log_channel, Access.ADMIN),
            CommandKind.ADD_STOCK_BULK: _Route(self._add_stock_bulk, Access.PAYOUT),
            CommandKind.GEN: _Route(self._gen, Access.PAYOUT),
            CommandKind.STOCK: _Route(self._stock, Access.PAYOUT),
            CommandKind.STATS: _Route(self._stats, Access.PAYOUT),
            CommandKind.CLEAR_STOCK: _Route(self._clear_stock, Access.ADMIN),
        }

    @property
    def uptime_seconds(self) -> float:
        return self._clock() - self._started_at

    async def dispatch(self, caller: Caller, guild_id: str, command) -> Outcome:
        """Run one command. Never raises; failures come back as an Outcome."""
        if isinstance(command, dict):
            try:
                command = parse_command(command)
            except ValidationError as e:
                return Outcome(None, OutcomeStatus.INVALID_INPUT, message=str(e))

        kind = command.command_kind
        route = self._routes[kind]
        logger.info(f"Guild {guild_id}: {caller.display} ran {kind.value}")

        try:
            await self._authorize(route.access, caller, guild_id)
            return await route.handler(caller, guild_id, command)
        except NotConfigured as e:
            return Outcome(kind, OutcomeStatus.NOT_CONFIGURED, message=str(e))
        except Unauthorized as e:
            return Outcome(
                kind,
                OutcomeStatus.UNAUTHORIZED,
                data={"required_role_id": e.required_role_id},
                message=str(e),
            )
        except CooldownActive as e:
            return Outcome(kind, OutcomeStatus.COOLDOWN, data={"retry_after": e.retry_after}, message=str(e))
        except OutOfStock as e:
            return Outcome(kind, OutcomeStatus.OUT_OF_STOCK, data={"service": e.service_type}, message=str(e))
        except ImportRejected as e:
            return Outcome(kind, OutcomeStatus.INVALID_INPUT, message=str(e))
        except StoreUnavailable as e:
            logger.error(f"Guild {guild_id}: {kind.value} failed, store unavailable: {e}")
            return Outcome(kind, OutcomeStatus.FAILED, message="The stock database is unavailable")
        except Exception as e:
            logger.error(f"Guild {guild_id}: unexpected error in {kind.value}: {e}", exc_info=True)
            return Outcome(kind, OutcomeStatus.FAILED, message="Unexpected error")

    async def _authorize(self, access: Access, caller: Caller, guild_id: str):
        if access == Access.ADMIN:
            require_admin(caller)
        else:
            config = await self.ledger.get_config(guild_id)
            require_payout_role(config, caller, guild_id)

    async def _send_log(self, guild_id: str, event: LogEvent):
        """Post to the guild's log channel if one is set. Failures are logged only."""
        try:
            config = await self.ledger.get_config(guild_id)
            if not config or not config.log_channel_id:
                return
            await self.presenter.send_log(guild_id, config.log_channel_id, event)
        except Exception as e:
            logger.error(f"Could not send log to guild {guild_id}: {e}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _setup(self, caller: Caller, guild_id: str, command: SetupCommand) -> Outcome:
        await self.ledger.configure(guild_id, command.payout_role_id, command.log_channel_id)
        return Outcome(
            command.command_kind,
            OutcomeStatus.OK,
            data={"payout_role_id": command.payout_role_id, "log_channel_id": command.log_channel_id},
        )

    async def _set_log_channel(self, caller: Caller, guild_id: str, command: SetLogChannelCommand) -> Outcome:
        await self.ledger.set_log_channel(guild_id, command.channel_id)
        return Outcome(command.command_kind, OutcomeStatus.OK, data={"log_channel_id": command.channel_id})

    async def _add_stock_bulk(self, caller: Caller, guild_id: str, command: AddStockBulkCommand) -> Outcome:
        if command.text is not None:
            text = command.text
        else:
            text = await fetch_attachment(command.attachment_url, command.filename)

        parsed = parse_credentials(text)
        if not parsed.credentials:
            return Outcome(
                command.command_kind,
                OutcomeStatus.INVALID_INPUT,
                data={"lines": parsed.lines},
                message="No valid email:secret lines found",
            )

        result = await self.ledger.bulk_add(guild_id, command.service, parsed.credentials)

        await self._send_log(guild_id, LogEvent(
            title="Stock Added (Bulk)",
            description=f"{caller.display} added {result.succeeded} {command.service.display_name} account(s)",
        ))

        return Outcome(
            command.command_kind,
            OutcomeStatus.OK,
            data={
                "service": command.service,
                "lines": parsed.lines,
                "succeeded": result.succeeded,
                "skipped": result.skipped,
            },
        )

    async def _gen(self, caller: Caller, guild_id: str, command: GenCommand) -> Outcome:
        service = command.service
        cooldown_key = (CommandKind.GEN, caller.user_id)
        self.cooldowns.hit(cooldown_key)

        try:
            account = await self.ledger.take_random(guild_id, service)
        except StoreUnavailable:
            # nothing was dispensed, let the caller retry straight away
            self.cooldowns.reset(cooldown_key)
            raise
        if account is None:
            raise OutOfStock(guild_id, service)

        # From here on the account is gone from stock whatever else fails.
        audit_recorded = True
        try:
            await self.ledger.record_transaction(guild_id, caller.user_id, service, account.email)
        except StoreUnavailable as e:
            audit_recorded = False
            logger.error(f"Guild {guild_id}: dispensed {account.email} but could not record it: {e}")

        data = {"service": service, "audit_recorded": audit_recorded}
        guide_url = self.guide_url if service.needs_access_guide else None
        try:
            await self.presenter.deliver_account(caller, guild_id, account, guide_url)
        except DeliveryFailure as e:
            logger.error(f"Could not send DM to {caller.display}: {e}")
            return Outcome(command.command_kind, OutcomeStatus.DELIVERY_FAILED, data=data, message=str(e))

        await self._send_log(guild_id, LogEvent(
            title="Account Generated",
            description=f"{caller.display} received a {service.display_name} account",
            fields={"Email": account.email},
        ))

        return Outcome(command.command_kind, OutcomeStatus.OK, data=data)

    async def _stock(self, caller: Caller, guild_id: str, command: StockCommand) -> Outcome:
        counts = await self.ledger.count(guild_id)
        return Outcome(command.command_kind, OutcomeStatus.OK, data={"counts": counts})

    async def _stats(self, caller: Caller, guild_id: str, command: StatsCommand) -> Outcome:
        stats = await self.ledger.stats(guild_id)
        return Outcome(
            command.command_kind,
            OutcomeStatus.OK,
            data={
                "total_stock": stats.total_stock,
                "total_generated": stats.total_generated,
                "uptime_seconds": self.uptime_seconds,
            },
        )

    async def _clear_stock(self, caller: Caller, guild_id: str, command: ClearStockCommand) -> Outcome:
        if not command.confirmed:
            return Outcome(
                command.command_kind,
                OutcomeStatus.CONFIRM_REQUIRED,
                data={"service": command.service},
                message=f"This deletes all {command.service.display_name} stock and cannot be undone",
            )

        deleted = await self.ledger.clear_all(guild_id, command.service)

        await self._send_log(guild_id, LogEvent(
            title="Stock Cleared",
            description=f"{caller.display} deleted {deleted} {command.service.display_name} account(s)",
        ))

        return Outcome(command.command_kind, OutcomeStatus.OK, data={"service": command.service, "deleted": deleted})
