"""Connection lifecycle for the bot's single messaging session."""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Set

from transports.base import (
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    Transport,
    TransportEvent,
    TransportFactory,
)

from .credentials import CredentialFile, restore_from_token
from .pairing import (
    DuplicateRequestError,
    PairingFailedError,
    TransportUnavailableError,
    format_pairing_code,
    normalize_phone,
)

log = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 5.0
RETRY_DELAY_SECONDS = 10.0
PAIRING_REQUEST_COOLDOWN_SECONDS = 60.0

EventSink = Callable[[TransportEvent, Transport], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting_pairing"
    OPEN = "open"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"
    LOGGED_OUT = "logged_out"


class ConnectionManager:
    """Owns the transport and drives connect, pump and reconnect in one task.

    Only one supervisor task exists at a time, so there is never more than one
    connect attempt in flight. The reconnect and retry delays are sleeps inside
    that task; cancelling it (``logout``/``stop``) drops any pending reconnect.
    """

    def __init__(
        self,
        factory: TransportFactory,
        session_dir: Path,
        *,
        on_event: Optional[EventSink] = None,
        on_closed: Optional[Callable[[Transport], Awaitable[None]]] = None,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        pairing_cooldown: float = PAIRING_REQUEST_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self.session_dir = Path(session_dir)
        self._on_event = on_event
        self._on_closed = on_closed
        self.reconnect_delay = reconnect_delay
        self.retry_delay = retry_delay
        self.pairing_cooldown = pairing_cooldown
        self._clock = clock

        self.state = ConnectionState.DISCONNECTED
        self.latest_qr: Optional[str] = None
        self.last_disconnect: Optional[DisconnectReason] = None
        self._current: Optional[Transport] = None
        self._supervisor: Optional[asyncio.Task] = None
        self._event_tasks: Set[asyncio.Task] = set()
        self._pairing_requests: Dict[str, float] = {}

    # ----- observation -----
    @property
    def transport(self) -> Optional[Transport]:
        """The live transport, or None unless the connection is open."""
        if self.state is ConnectionState.OPEN:
            return self._current
        return None

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def running(self) -> bool:
        return self._supervisor is not None and not self._supervisor.done()

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            log.info("connection: %s -> %s", self.state.value, state.value)
            self.state = state

    # ----- lifecycle -----
    def restore_credentials(self, token: str) -> None:
        """Write a credential token into the session directory.

        Raises :class:`~core.credentials.DecodeError` without touching disk
        when the token is corrupt.
        """
        restore_from_token(token, self.session_dir)

    def start(self) -> bool:
        if self.running:
            log.debug("connection: start ignored, attempt already in progress")
            return False
        if self.state is ConnectionState.LOGGED_OUT:
            log.warning("connection: logged out; pair again before starting")
            return False
        self._supervisor = asyncio.create_task(self._supervise())
        return True

    async def _supervise(self) -> None:
        while True:
            try:
                reason = await self._run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("connection: attempt failed, retrying in %.0fs", self.retry_delay)
                self._set_state(ConnectionState.RECONNECTING)
                await asyncio.sleep(self.retry_delay)
                continue

            self.last_disconnect = reason
            if reason is DisconnectReason.LOGGED_OUT:
                log.error("connection: logged out; delete %s and pair again", self.session_dir)
                self._set_state(ConnectionState.LOGGED_OUT)
                return
            log.warning("connection closed (%s), reconnecting in %.0fs", reason.value, self.reconnect_delay)
            self._set_state(ConnectionState.RECONNECTING)
            await asyncio.sleep(self.reconnect_delay)

    async def _run_once(self) -> DisconnectReason:
        transport = self._factory(self.session_dir)
        self._current = transport
        try:
            self._set_state(
                ConnectionState.CONNECTING if transport.registered else ConnectionState.AWAITING_PAIRING
            )
            await transport.connect()
            async for event in transport.events():
                reason = await self._handle(transport, event)
                if reason is not None:
                    return reason
            return DisconnectReason.CONNECTION_LOST
        finally:
            if self.state is ConnectionState.OPEN:
                self._set_state(ConnectionState.CLOSED)
            self._current = None
            # handlers still holding this transport must not outlive it
            await self._cancel_event_tasks()
            await self._close(transport)

    async def _handle(self, transport: Transport, event: TransportEvent) -> Optional[DisconnectReason]:
        if isinstance(event, ConnectionUpdate):
            if event.qr:
                self.latest_qr = event.qr
                if self.state is not ConnectionState.OPEN:
                    self._set_state(ConnectionState.AWAITING_PAIRING)
                log.info("connection: pairing QR available")
            if event.connection == "open":
                self.latest_qr = None
                self._set_state(ConnectionState.OPEN)
            elif event.connection == "close":
                self._set_state(ConnectionState.CLOSED)
                return event.reason or DisconnectReason.UNKNOWN
            return None

        if isinstance(event, CredentialsUpdate):
            try:
                await transport.save_credentials()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.warning("connection: failed to save credentials: %s", exc)
            return None

        if self.state is not ConnectionState.OPEN or self._on_event is None:
            log.debug("connection: dropped %s while %s", type(event).__name__, self.state.value)
            return None
        task = asyncio.create_task(self._deliver(event, transport))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)
        return None

    async def _deliver(self, event: TransportEvent, transport: Transport) -> None:
        try:
            await self._on_event(event, transport)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("connection: event handler failed for %s", type(event).__name__)

    async def _close(self, transport: Transport) -> None:
        if self._on_closed is not None:
            try:
                await self._on_closed(transport)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("connection: close hook failed")
        try:
            await transport.close()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.debug("connection: transport close failed: %s", exc)

    async def _cancel_supervisor(self) -> None:
        task, self._supervisor = self._supervisor, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def logout(self) -> None:
        await self._cancel_supervisor()
        CredentialFile(self.session_dir).delete()
        self.latest_qr = None
        self._set_state(ConnectionState.LOGGED_OUT)

    async def _cancel_event_tasks(self) -> None:
        tasks = list(self._event_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._event_tasks.clear()

    async def stop(self) -> None:
        await self._cancel_supervisor()
        await self._cancel_event_tasks()
        if self.state is not ConnectionState.LOGGED_OUT:
            self._set_state(ConnectionState.DISCONNECTED)

    # ----- pairing -----
    async def request_pairing_code(self, phone: str) -> str:
        digits = normalize_phone(phone)
        transport = self._current
        if self.state is not ConnectionState.AWAITING_PAIRING or transport is None:
            raise TransportUnavailableError("bot is not waiting for pairing")

        now = self._clock()
        self._pairing_requests = {
            number: ts
            for number, ts in self._pairing_requests.items()
            if now - ts < self.pairing_cooldown
        }
        if digits in self._pairing_requests:
            raise DuplicateRequestError("a code was already requested for this number")
        self._pairing_requests[digits] = now

        try:
            raw = await transport.request_pairing_code(digits)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._pairing_requests.pop(digits, None)
            log.warning("connection: pairing code request failed: %s", exc)
            raise PairingFailedError("failed to generate pairing code") from exc
        log.info("connection: pairing code issued for %s", digits)
        return format_pairing_code(raw)
