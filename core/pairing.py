"""Short-lived pairing attempts that end in a portable credential token.

Each attempt owns its own transport and temporary session directory. Once
the phone links, the saved credential document is encoded and handed out
exactly once; the attempt is then kept for a grace period and reaped.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from transports.base import (
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    Transport,
    TransportFactory,
)

from .credentials import CredentialFile

log = logging.getLogger(__name__)

ATTEMPT_TTL_SECONDS = 600.0
DELIVERY_GRACE_SECONDS = 300.0
REAP_INTERVAL_SECONDS = 60.0
WARMUP_DELAY_SECONDS = 5.0
SETTLE_DELAY_SECONDS = 2.0
CREDENTIAL_DELAY_SECONDS = 1.5

_NON_DIGITS = re.compile(r"\D")


class PairingError(Exception):
    status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidPhoneError(PairingError):
    status = 400


class TransportUnavailableError(PairingError):
    status = 503


class DuplicateRequestError(PairingError):
    status = 429


class PairingFailedError(PairingError):
    status = 500


class AttemptNotFoundError(PairingError):
    status = 404


def normalize_phone(raw: Optional[str]) -> str:
    if not raw or not str(raw).strip():
        raise InvalidPhoneError("Phone number required.")
    digits = _NON_DIGITS.sub("", str(raw))
    if not 7 <= len(digits) <= 15:
        raise InvalidPhoneError("Invalid phone number.")
    return digits


def format_pairing_code(raw: str) -> str:
    code = re.sub(r"[\s-]", "", raw or "")
    return "-".join(code[i:i + 4] for i in range(0, len(code), 4))


class PairingStatus(str, Enum):
    WAITING_PAIRING = "waiting_pairing"
    PAIRED = "paired"
    READY = "ready"
    ERROR = "error"


@dataclass
class PairingAttempt:
    token: str
    phone: str
    directory: Path
    created_at: float
    transport: Optional[Transport] = None
    status: PairingStatus = PairingStatus.WAITING_PAIRING
    credential_token: Optional[str] = None
    delivered_at: Optional[float] = None
    pump: Optional[asyncio.Task] = None


@dataclass
class PollResult:
    status: PairingStatus
    credential_token: Optional[str] = None


class PairingOrchestrator:
    def __init__(
        self,
        factory: TransportFactory,
        sessions_dir: Path,
        *,
        ttl: float = ATTEMPT_TTL_SECONDS,
        grace: float = DELIVERY_GRACE_SECONDS,
        reap_interval: float = REAP_INTERVAL_SECONDS,
        warmup_delay: float = WARMUP_DELAY_SECONDS,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        credential_delay: float = CREDENTIAL_DELAY_SECONDS,
        clock: Callable[[], float] = time.time,
        token_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._factory = factory
        self.sessions_dir = Path(sessions_dir)
        self.ttl = ttl
        self.grace = grace
        self.reap_interval = reap_interval
        self.warmup_delay = warmup_delay
        self.settle_delay = settle_delay
        self.credential_delay = credential_delay
        self._clock = clock
        self._token_factory = token_factory
        self._attempts: Dict[str, PairingAttempt] = {}
        self._reaper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._attempts)

    def get(self, token: str) -> Optional[PairingAttempt]:
        return self._attempts.get(token)

    async def request_code(self, phone: str) -> Tuple[str, str]:
        """Start an attempt for ``phone``; returns ``(token, formatted_code)``."""
        digits = normalize_phone(phone)
        for attempt in self._attempts.values():
            if attempt.phone == digits and attempt.status is PairingStatus.WAITING_PAIRING:
                raise DuplicateRequestError("A pairing request for this number is already in progress.")

        token = self._token_factory()
        directory = self.sessions_dir / token
        attempt = PairingAttempt(token=token, phone=digits, directory=directory, created_at=self._clock())
        self._attempts[token] = attempt

        try:
            directory.mkdir(parents=True, exist_ok=True)
            attempt.transport = self._factory(directory)
            await attempt.transport.connect()
        except asyncio.CancelledError:
            await self._discard(token)
            raise
        except Exception as exc:
            log.warning("pairing %s: transport unavailable: %s", token, exc)
            await self._discard(token)
            raise TransportUnavailableError("Pairing service is not ready. Try again shortly.") from exc

        attempt.pump = asyncio.create_task(self._pump(attempt))
        try:
            await asyncio.sleep(self.warmup_delay)
            log.info("pairing %s: requesting code for +%s", token, digits)
            raw = await attempt.transport.request_pairing_code(digits)
            await asyncio.sleep(self.settle_delay)
            if not raw:
                raise PairingFailedError("No pairing code returned.")
        except asyncio.CancelledError:
            await self._discard(token)
            raise
        except Exception as exc:
            log.warning("pairing %s: code request failed for +%s: %s", token, digits, exc)
            await self._discard(token)
            raise PairingFailedError(
                "Failed to generate pairing code. Make sure your number is registered on WhatsApp."
            ) from exc

        code = format_pairing_code(raw)
        log.info("pairing %s: code issued for +%s", token, digits)
        return token, code

    async def _pump(self, attempt: PairingAttempt) -> None:
        transport = attempt.transport
        try:
            async for event in transport.events():
                if isinstance(event, CredentialsUpdate):
                    await transport.save_credentials()
                    if attempt.status is PairingStatus.PAIRED:
                        self._capture(attempt, final=False)
                elif isinstance(event, ConnectionUpdate):
                    if event.connection == "open":
                        log.info("pairing %s: linked", attempt.token)
                        attempt.status = PairingStatus.PAIRED
                        await transport.save_credentials()
                        await asyncio.sleep(self.credential_delay)
                        self._capture(attempt, final=True)
                    elif event.connection == "close":
                        if (
                            event.reason is DisconnectReason.LOGGED_OUT
                            and attempt.status is not PairingStatus.READY
                        ):
                            attempt.status = PairingStatus.ERROR
                        break
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("pairing %s: transport failed", attempt.token)
            if attempt.status is not PairingStatus.READY:
                attempt.status = PairingStatus.ERROR

    def _capture(self, attempt: PairingAttempt, *, final: bool) -> None:
        if attempt.status is PairingStatus.READY:
            return
        try:
            attempt.credential_token = CredentialFile(attempt.directory).to_token()
        except (OSError, ValueError) as exc:
            log.warning("pairing %s: credentials not captured: %s", attempt.token, exc)
            if final:
                attempt.status = PairingStatus.ERROR
            return
        attempt.status = PairingStatus.READY
        log.info("pairing %s: credential token ready for +%s", attempt.token, attempt.phone)

    def _expired(self, attempt: PairingAttempt, now: float) -> bool:
        if now - attempt.created_at > self.ttl:
            return True
        return attempt.delivered_at is not None and now - attempt.delivered_at > self.grace

    async def poll_status(self, token: str) -> PollResult:
        attempt = self._attempts.get(token)
        if attempt is None:
            raise AttemptNotFoundError("Session not found or expired.")
        now = self._clock()
        if self._expired(attempt, now):
            await self._discard(token)
            raise AttemptNotFoundError("Session not found or expired.")
        if attempt.status is PairingStatus.READY:
            if attempt.delivered_at is None:
                attempt.delivered_at = now
                return PollResult(PairingStatus.READY, attempt.credential_token)
            return PollResult(PairingStatus.READY)
        return PollResult(attempt.status)

    async def _discard(self, token: str) -> None:
        attempt = self._attempts.pop(token, None)
        if attempt is None:
            return
        if attempt.pump is not None and attempt.pump is not asyncio.current_task():
            attempt.pump.cancel()
            try:
                await attempt.pump
            except asyncio.CancelledError:
                pass
        if attempt.transport is not None:
            try:
                await attempt.transport.close()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.debug("pairing %s: transport close failed: %s", token, exc)
        shutil.rmtree(attempt.directory, ignore_errors=True)

    async def reap(self) -> int:
        now = self._clock()
        stale = [token for token, attempt in self._attempts.items() if self._expired(attempt, now)]
        for token in stale:
            log.info("pairing %s: cleaning up stale attempt", token)
            await self._discard(token)
        return len(stale)

    async def _run_reaper(self) -> None:
        while True:
            await asyncio.sleep(self.reap_interval)
            try:
                await self.reap()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("pairing reap failed")

    def start(self) -> None:
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.create_task(self._run_reaper())

    async def stop(self) -> None:
        task, self._reaper = self._reaper, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for token in list(self._attempts):
            await self._discard(token)
