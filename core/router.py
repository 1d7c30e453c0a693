"""Command dispatch: prefix parsing, cooldown, capability checks and failure isolation."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
)

from transports.base import (
    GroupMetadata,
    InboundMessage,
    OutboundMessage,
    Transport,
    TransportEvent,
    is_group_id,
)

from .config import BotConfig
from .services import ExternalServices
from .state import StateStore

log = logging.getLogger(__name__)

COOLDOWN_SECONDS = 1.0
UNKNOWN_COMMAND_REPLY = "❓ Unknown command: *{name}*\n\nType {prefix}menu for list of commands."
FAILURE_NOTICE = "⚠️ An error occurred while processing your command."


class Capability(enum.Flag):
    NONE = 0
    GROUP_ONLY = enum.auto()
    ADMIN_ONLY = enum.auto()
    BOT_ADMIN = enum.auto()
    OWNER_ONLY = enum.auto()


# checked in this order; the first unmet capability wins
CAPABILITY_REJECTIONS: Tuple[Tuple[Capability, str], ...] = (
    (Capability.GROUP_ONLY, "❌ Group only command."),
    (Capability.ADMIN_ONLY, "❌ Admin only command."),
    (Capability.BOT_ADMIN, "❌ Bot needs to be admin."),
    (Capability.OWNER_ONLY, "❌ Owner only command."),
)


class CommandUsageError(Exception):
    """Raised by a handler to answer with a corrective message."""


@dataclass(frozen=True)
class CommandInvocation:
    command_name: str
    args: Tuple[str, ...]
    sender_id: str
    conversation_id: str
    is_group: bool
    sender_is_admin: bool = False
    sender_is_owner: bool = False
    bot_is_admin: bool = False
    mentions: Tuple[str, ...] = ()
    message_id: str = ""
    prefix: str = "."

    @property
    def text(self) -> str:
        return " ".join(self.args)


Handler = Callable[["CommandContext"], Awaitable[None]]


@dataclass
class Command:
    name: str
    handler: Handler
    capabilities: Capability = Capability.NONE
    aliases: Tuple[str, ...] = ()
    category: str = "general"
    description: str = ""


class CommandRegistry:
    def __init__(self) -> None:
        self._commands: Dict[str, Command] = {}
        self._primary: List[Command] = []

    def add(self, command: Command) -> Command:
        for name in (command.name, *command.aliases):
            key = name.lower()
            if key in self._commands:
                raise ValueError(f"command {key!r} registered twice")
            self._commands[key] = command
        self._primary.append(command)
        return command

    def register(
        self,
        name: str,
        *,
        aliases: Iterable[str] = (),
        capabilities: Capability = Capability.NONE,
        category: str = "general",
        description: str = "",
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add(
                Command(
                    name=name.lower(),
                    handler=handler,
                    capabilities=capabilities,
                    aliases=tuple(a.lower() for a in aliases),
                    category=category,
                    description=description,
                )
            )
            return handler

        return decorator

    def get(self, name: str) -> Optional[Command]:
        return self._commands.get((name or "").lower())

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __iter__(self) -> Iterator[Command]:
        return iter(self._primary)

    def __len__(self) -> int:
        return len(self._primary)

    def by_category(self) -> Dict[str, List[Command]]:
        grouped: Dict[str, List[Command]] = {}
        for command in self._primary:
            grouped.setdefault(command.category, []).append(command)
        return grouped


class CooldownTracker:
    """Remembers the last accepted command per (conversation, sender)."""

    def __init__(self, window: float = COOLDOWN_SECONDS, *, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self._clock = clock
        self._last: Dict[Tuple[str, str], float] = {}

    def allow(self, conversation_id: str, sender_id: str) -> bool:
        now = self._clock()
        key = (conversation_id, sender_id)
        last = self._last.get(key)
        if last is not None and now - last < self.window:
            return False
        self._last[key] = now
        return True

    def prune(self) -> int:
        threshold = self._clock() - self.window
        stale = [key for key, ts in self._last.items() if ts <= threshold]
        for key in stale:
            del self._last[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._last)


class ConversationContext:
    def __init__(
        self,
        router: "CommandRouter",
        transport: Transport,
        conversation_id: str,
        *,
        metadata: Optional[GroupMetadata] = None,
    ) -> None:
        self.router = router
        self.transport = transport
        self.conversation_id = conversation_id
        self.metadata = metadata

    @property
    def store(self) -> StateStore:
        return self.router.store

    @property
    def config(self) -> BotConfig:
        return self.router.config

    @property
    def services(self) -> ExternalServices:
        return self.router.services

    async def reply(
        self,
        text: str = "",
        *,
        mentions: Optional[Sequence[str]] = None,
        image_url: Optional[str] = None,
        image_bytes: Optional[bytes] = None,
    ) -> None:
        await self.transport.send(
            self.conversation_id,
            OutboundMessage(
                text=text,
                mentions=list(mentions or []),
                image_url=image_url,
                image_bytes=image_bytes,
            ),
        )

    async def group_metadata(self) -> GroupMetadata:
        if self.metadata is None:
            self.metadata = await self.transport.group_metadata(self.conversation_id)
        return self.metadata


class MessageContext(ConversationContext):
    """Inbound message plus the sender's standing, for pre-dispatch behaviors."""

    def __init__(
        self,
        router: "CommandRouter",
        transport: Transport,
        message: InboundMessage,
        *,
        metadata: Optional[GroupMetadata] = None,
        sender_is_admin: bool = False,
        bot_is_admin: bool = False,
    ) -> None:
        super().__init__(router, transport, message.conversation_id, metadata=metadata)
        self.message = message
        self.sender_is_admin = sender_is_admin
        self.bot_is_admin = bot_is_admin

    @property
    def sender_id(self) -> str:
        return self.message.sender_id


class CommandContext(ConversationContext):
    def __init__(
        self,
        router: "CommandRouter",
        transport: Transport,
        invocation: CommandInvocation,
        *,
        metadata: Optional[GroupMetadata] = None,
    ) -> None:
        super().__init__(router, transport, invocation.conversation_id, metadata=metadata)
        self.invocation = invocation

    @property
    def args(self) -> Tuple[str, ...]:
        return self.invocation.args

    @property
    def text(self) -> str:
        return self.invocation.text

    @property
    def sender_id(self) -> str:
        return self.invocation.sender_id

    def usage(self, template: str) -> CommandUsageError:
        return CommandUsageError(template.format(prefix=self.invocation.prefix))


Behavior = Callable[[MessageContext], Awaitable[bool]]
EventHandler = Callable[["CommandRouter", Any, Transport], Awaitable[None]]


class CommandRouter:
    def __init__(
        self,
        registry: CommandRegistry,
        store: StateStore,
        *,
        config: BotConfig,
        services: Optional[ExternalServices] = None,
        behaviors: Sequence[Behavior] = (),
        event_handlers: Optional[Dict[Type[Any], EventHandler]] = None,
        cooldown: Optional[CooldownTracker] = None,
        presence_delays: Tuple[float, float] = (0.2, 1.3),
    ) -> None:
        self.registry = registry
        self.store = store
        self.config = config
        self.services = services or ExternalServices()
        self.behaviors = list(behaviors)
        self.event_handlers = dict(event_handlers or {})
        self.cooldown = cooldown if cooldown is not None else CooldownTracker()
        self.presence_delays = presence_delays
        self.started_at = time.time()
        self._tasks: Dict[asyncio.Task, Optional[Transport]] = {}
        self._maintenance: Optional[asyncio.Task] = None

    @property
    def prefix(self) -> str:
        return self.config.prefix

    def parse(self, body: str) -> Optional[Tuple[str, List[str]]]:
        text = (body or "").strip()
        if not self.prefix or not text.startswith(self.prefix):
            return None
        parts = text[len(self.prefix):].split()
        if not parts:
            return None
        return parts[0].lower(), parts[1:]

    def check_capabilities(self, command: Command, invocation: CommandInvocation) -> Optional[str]:
        satisfied = {
            Capability.GROUP_ONLY: invocation.is_group,
            Capability.ADMIN_ONLY: invocation.sender_is_admin,
            Capability.BOT_ADMIN: invocation.bot_is_admin,
            Capability.OWNER_ONLY: invocation.sender_is_owner,
        }
        for capability, rejection in CAPABILITY_REJECTIONS:
            if capability in command.capabilities and not satisfied[capability]:
                return rejection
        return None

    def spawn(self, coro: Awaitable[Any], *, transport: Optional[Transport] = None) -> asyncio.Task:
        """Run ``coro`` in the background; tasks bound to a transport die with it."""
        task = asyncio.ensure_future(coro)
        self._tasks[task] = transport
        task.add_done_callback(lambda done: self._tasks.pop(done, None))
        return task

    async def detach(self, transport: Transport) -> None:
        """Cancel background work still holding ``transport``."""
        tasks = [task for task, bound in self._tasks.items() if bound is transport]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def handle_event(self, event: TransportEvent, transport: Transport) -> None:
        if isinstance(event, InboundMessage):
            await self.handle_message(event, transport)
            return
        handler = self.event_handlers.get(type(event))
        if handler is None:
            log.debug("no handler for %s", type(event).__name__)
            return
        try:
            await handler(self, event, transport)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("%s handler failed", type(event).__name__)

    async def handle_message(self, message: InboundMessage, transport: Transport) -> None:
        if message.from_me or message.kind != "notify":
            return
        async with self.store.conversation_lock(message.conversation_id):
            try:
                await self._process(message, transport)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("message processing failed in %s", message.conversation_id)

    async def _message_context(self, message: InboundMessage, transport: Transport) -> MessageContext:
        if not message.is_group:
            return MessageContext(self, transport, message)
        try:
            metadata = await transport.group_metadata(message.conversation_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.debug("group metadata unavailable for %s: %s", message.conversation_id, exc)
            return MessageContext(self, transport, message)
        return MessageContext(
            self,
            transport,
            message,
            metadata=metadata,
            sender_is_admin=metadata.is_admin(message.sender_id),
            bot_is_admin=metadata.is_admin(transport.user_id),
        )

    async def _process(self, message: InboundMessage, transport: Transport) -> None:
        ctx = await self._message_context(message, transport)
        for behavior in self.behaviors:
            if await behavior(ctx):
                return

        parsed = self.parse(message.text)
        if parsed is None:
            return
        name, args = parsed
        if not self.cooldown.allow(message.conversation_id, message.sender_id):
            log.debug("cooldown: dropped %s from %s", name, message.sender_id)
            return

        invocation = CommandInvocation(
            command_name=name,
            args=tuple(args),
            sender_id=message.sender_id,
            conversation_id=message.conversation_id,
            is_group=is_group_id(message.conversation_id),
            sender_is_admin=ctx.sender_is_admin,
            sender_is_owner=self.config.is_owner(message.sender_id),
            bot_is_admin=ctx.bot_is_admin,
            mentions=tuple(message.mentions),
            message_id=message.message_id,
            prefix=self.prefix,
        )
        log.info(
            "command: %s from %s in %s",
            name,
            message.sender_id,
            "group" if invocation.is_group else "DM",
        )
        self.spawn(self._simulate_presence(transport, message.conversation_id), transport=transport)
        await self.dispatch(invocation, transport, metadata=ctx.metadata)

    async def dispatch(
        self,
        invocation: CommandInvocation,
        transport: Transport,
        *,
        metadata: Optional[GroupMetadata] = None,
    ) -> None:
        ctx = CommandContext(self, transport, invocation, metadata=metadata)
        try:
            command = self.registry.get(invocation.command_name)
            if command is None:
                await ctx.reply(
                    UNKNOWN_COMMAND_REPLY.format(name=invocation.command_name, prefix=self.prefix)
                )
                return
            rejection = self.check_capabilities(command, invocation)
            if rejection:
                await ctx.reply(rejection)
                return
            await command.handler(ctx)
        except CommandUsageError as exc:
            await self._safe_reply(ctx, str(exc))
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception(
                "command %s failed in %s", invocation.command_name, invocation.conversation_id
            )
            await self._safe_reply(ctx, FAILURE_NOTICE)

    async def _safe_reply(self, ctx: ConversationContext, text: str) -> None:
        try:
            await ctx.reply(text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("failed to send reply to %s: %s", ctx.conversation_id, exc)

    async def _simulate_presence(self, transport: Transport, conversation_id: str) -> None:
        first, second = self.presence_delays
        try:
            await asyncio.sleep(first)
            await transport.send_presence(conversation_id, "composing")
            await asyncio.sleep(second)
            await transport.send_presence(conversation_id, "recording")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.debug("presence update failed for %s: %s", conversation_id, exc)

    async def _run_maintenance(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            pruned = self.cooldown.prune()
            if pruned:
                log.debug("cooldown: pruned %d entries", pruned)

    def start(self, *, maintenance_interval: float = 60.0) -> None:
        if self._maintenance is None or self._maintenance.done():
            self._maintenance = asyncio.create_task(self._run_maintenance(maintenance_interval))

    async def stop(self) -> None:
        tasks = list(self._tasks)
        if self._maintenance is not None:
            tasks.append(self._maintenance)
            self._maintenance = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
