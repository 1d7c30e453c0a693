import asyncio
import itertools

import pytest

from core.credentials import decode
from core.pairing import (
    AttemptNotFoundError,
    DuplicateRequestError,
    InvalidPhoneError,
    PairingFailedError,
    PairingOrchestrator,
    PairingStatus,
    TransportUnavailableError,
    format_pairing_code,
    normalize_phone,
)
from tests.fakes import FakeClock, FakeTransportFactory, settle
from transports.base import ConnectionUpdate, CredentialsUpdate, DisconnectReason


def make_orchestrator(tmp_path, factory, clock=None):
    tokens = (f"tok-{n}" for n in itertools.count(1))
    return PairingOrchestrator(
        factory,
        tmp_path / "sessions",
        warmup_delay=0,
        settle_delay=0,
        credential_delay=0,
        clock=clock or FakeClock(),
        token_factory=lambda: next(tokens),
    )


def test_normalize_phone():
    assert normalize_phone("+44 7911-123456") == "447911123456"
    for raw in (None, "", "   "):
        with pytest.raises(InvalidPhoneError) as info:
            normalize_phone(raw)
        assert info.value.message == "Phone number required."
    for raw in ("123456", "1" * 16, "phone"):
        with pytest.raises(InvalidPhoneError) as info:
            normalize_phone(raw)
        assert info.value.status == 400


def test_format_pairing_code():
    assert format_pairing_code("ABCD1234") == "ABCD-1234"
    assert format_pairing_code("AB-CD 12 34") == "ABCD-1234"
    assert format_pairing_code("ABCDEF") == "ABCD-EF"


def test_full_pairing_delivers_token_once(tmp_path):
    clock = FakeClock()
    factory = FakeTransportFactory()
    orchestrator = make_orchestrator(tmp_path, factory, clock)

    async def scenario():
        token, code = await orchestrator.request_code("+44 7911 123456")
        assert (token, code) == ("tok-1", "ABCD-1234")
        transport = factory.last
        assert transport.pairing_requests == ["447911123456"]
        directory = orchestrator.get(token).directory
        assert directory.is_dir()

        assert (await orchestrator.poll_status(token)).status is PairingStatus.WAITING_PAIRING

        transport.push(ConnectionUpdate(connection="open"))
        await settle()
        first = await orchestrator.poll_status(token)
        assert first.status is PairingStatus.READY
        assert decode(first.credential_token) == transport.credentials

        second = await orchestrator.poll_status(token)
        assert second.status is PairingStatus.READY
        assert second.credential_token is None

        clock.advance(301)
        with pytest.raises(AttemptNotFoundError) as info:
            await orchestrator.poll_status(token)
        assert info.value.status == 404
        assert not directory.exists()
        assert transport.closed
        assert len(orchestrator) == 0

    asyncio.run(scenario())


def test_linked_attempt_reports_paired_until_credentials_settle(tmp_path):
    factory = FakeTransportFactory()
    orchestrator = make_orchestrator(tmp_path, factory)
    orchestrator.credential_delay = 3600

    async def scenario():
        token, _ = await orchestrator.request_code("15551234567")
        transport = factory.last
        transport.push(CredentialsUpdate(), ConnectionUpdate(connection="open"))
        await settle()
        result = await orchestrator.poll_status(token)
        await orchestrator.stop()
        return result, transport

    result, transport = asyncio.run(scenario())
    assert result.status is PairingStatus.PAIRED
    assert result.credential_token is None
    assert transport.saved == 2


def test_unknown_token(tmp_path):
    orchestrator = make_orchestrator(tmp_path, FakeTransportFactory())
    with pytest.raises(AttemptNotFoundError) as info:
        asyncio.run(orchestrator.poll_status("missing"))
    assert info.value.message == "Session not found or expired."


def test_invalid_phone_creates_no_attempt(tmp_path):
    factory = FakeTransportFactory()
    orchestrator = make_orchestrator(tmp_path, factory)
    with pytest.raises(InvalidPhoneError):
        asyncio.run(orchestrator.request_code("12"))
    assert len(orchestrator) == 0
    assert factory.created == []


def test_duplicate_request_for_same_phone(tmp_path):
    orchestrator = make_orchestrator(tmp_path, FakeTransportFactory())

    async def scenario():
        await orchestrator.request_code("15551234567")
        with pytest.raises(DuplicateRequestError) as info:
            await orchestrator.request_code("+1 555 123 4567")
        assert info.value.status == 429
        await orchestrator.request_code("15557654321")
        assert len(orchestrator) == 2
        await orchestrator.stop()
        assert len(orchestrator) == 0

    asyncio.run(scenario())


def test_code_failure_discards_attempt(tmp_path):
    factory = FakeTransportFactory()
    factory.fail_pairing = True
    orchestrator = make_orchestrator(tmp_path, factory)
    with pytest.raises(PairingFailedError) as info:
        asyncio.run(orchestrator.request_code("15551234567"))
    assert info.value.status == 500
    assert "registered on WhatsApp" in info.value.message
    assert len(orchestrator) == 0
    assert factory.last.closed
    assert not (tmp_path / "sessions" / "tok-1").exists()


def test_unavailable_transport(tmp_path):
    factory = FakeTransportFactory()
    factory.fail_connects = 1
    orchestrator = make_orchestrator(tmp_path, factory)
    with pytest.raises(TransportUnavailableError) as info:
        asyncio.run(orchestrator.request_code("15551234567"))
    assert info.value.status == 503
    assert len(orchestrator) == 0


def test_logged_out_before_link_is_error(tmp_path):
    factory = FakeTransportFactory()
    orchestrator = make_orchestrator(tmp_path, factory)

    async def scenario():
        token, _ = await orchestrator.request_code("15551234567")
        factory.last.push(ConnectionUpdate(connection="close", reason=DisconnectReason.LOGGED_OUT))
        await settle()
        result = await orchestrator.poll_status(token)
        await orchestrator.stop()
        return result

    assert asyncio.run(scenario()).status is PairingStatus.ERROR


def test_reap_removes_stale_attempts(tmp_path):
    clock = FakeClock()
    factory = FakeTransportFactory()
    orchestrator = make_orchestrator(tmp_path, factory, clock)

    async def scenario():
        await orchestrator.request_code("15551234567")
        clock.advance(300)
        await orchestrator.request_code("15557654321")
        clock.advance(301)
        assert await orchestrator.reap() == 1
        assert orchestrator.get("tok-1") is None
        assert orchestrator.get("tok-2") is not None
        await orchestrator.stop()

    asyncio.run(scenario())
    assert factory.created[0].closed
    assert not (tmp_path / "sessions" / "tok-1").exists()
