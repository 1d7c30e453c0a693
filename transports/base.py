"""Transport abstraction over the messaging network connection.

The wire protocol lives behind :class:`Transport`; concrete implementations are
supplied by the deployment and resolved through ``TRANSPORT_FACTORY``.
"""

from __future__ import annotations

import abc
import importlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional, Union

GROUP_SUFFIX = "@g.us"
USER_SUFFIX = "@s.whatsapp.net"


class DisconnectReason(str, Enum):
    LOGGED_OUT = "logged_out"
    CONNECTION_LOST = "connection_lost"
    TIMED_OUT = "timed_out"
    RESTART_REQUIRED = "restart_required"
    UNKNOWN = "unknown"


@dataclass
class ConnectionUpdate:
    connection: Optional[str] = None  # "connecting" | "open" | "close"
    qr: Optional[str] = None
    reason: Optional[DisconnectReason] = None
    detail: str = ""


@dataclass
class CredentialsUpdate:
    pass


@dataclass
class InboundMessage:
    conversation_id: str
    sender_id: str
    text: str = ""
    message_id: str = ""
    from_me: bool = False
    mentions: List[str] = field(default_factory=list)
    kind: str = "notify"

    @property
    def is_group(self) -> bool:
        return is_group_id(self.conversation_id)


@dataclass
class MessageRevoked:
    conversation_id: str
    sender_id: str


@dataclass
class ParticipantsUpdate:
    conversation_id: str
    participants: List[str]
    action: str  # "add" | "remove" | "promote" | "demote"


@dataclass
class ContactsUpsert:
    contact_ids: List[str]


TransportEvent = Union[
    ConnectionUpdate,
    CredentialsUpdate,
    InboundMessage,
    MessageRevoked,
    ParticipantsUpdate,
    ContactsUpsert,
]


@dataclass
class GroupMetadata:
    conversation_id: str
    subject: str = ""
    participants: List[str] = field(default_factory=list)
    admins: List[str] = field(default_factory=list)

    def is_admin(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        wanted = user_part(user_id)
        return any(user_part(admin) == wanted for admin in self.admins)


@dataclass
class OutboundMessage:
    text: str = ""
    mentions: List[str] = field(default_factory=list)
    image_url: Optional[str] = None
    image_bytes: Optional[bytes] = None

    @property
    def has_image(self) -> bool:
        return bool(self.image_url or self.image_bytes)


class Transport(abc.ABC):
    """One live connection to the messaging network."""

    @property
    @abc.abstractmethod
    def registered(self) -> bool:
        """True when the session directory already holds usable credentials."""

    @property
    @abc.abstractmethod
    def user_id(self) -> Optional[str]:
        ...

    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    @abc.abstractmethod
    def events(self) -> AsyncIterator[TransportEvent]:
        """Yield events until the connection is closed."""

    @abc.abstractmethod
    async def request_pairing_code(self, phone: str) -> str:
        ...

    @abc.abstractmethod
    async def save_credentials(self) -> None:
        ...

    @abc.abstractmethod
    async def send(self, conversation_id: str, message: OutboundMessage) -> None:
        ...

    @abc.abstractmethod
    async def react(self, conversation_id: str, message_id: str, emoji: str) -> None:
        ...

    @abc.abstractmethod
    async def delete_message(self, conversation_id: str, message_id: str, sender_id: str) -> None:
        ...

    @abc.abstractmethod
    async def send_presence(self, conversation_id: str, presence: str) -> None:
        ...

    @abc.abstractmethod
    async def mark_read(self, conversation_id: str, message_id: str) -> None:
        ...

    @abc.abstractmethod
    async def group_metadata(self, conversation_id: str) -> GroupMetadata:
        ...

    @abc.abstractmethod
    async def update_participants(
        self, conversation_id: str, participant_ids: List[str], action: str
    ) -> None:
        ...

    @abc.abstractmethod
    async def update_group_setting(self, conversation_id: str, *, announcement: bool) -> None:
        ...

    @abc.abstractmethod
    async def update_group_subject(self, conversation_id: str, subject: str) -> None:
        ...

    @abc.abstractmethod
    async def update_group_picture(self, conversation_id: str, image_url: str) -> None:
        ...

    @abc.abstractmethod
    async def group_invite_code(self, conversation_id: str) -> str:
        ...

    @abc.abstractmethod
    async def leave_group(self, conversation_id: str) -> None:
        ...

    @abc.abstractmethod
    async def update_profile_name(self, name: str) -> None:
        ...

    @abc.abstractmethod
    async def update_profile_status(self, status: str) -> None:
        ...

    @abc.abstractmethod
    async def profile_picture_url(self, user_id: str) -> Optional[str]:
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        ...


TransportFactory = Callable[[Path], Transport]


def load_transport_factory(target: str) -> TransportFactory:
    """Resolve ``package.module:callable`` into a transport factory."""
    module_name, _, attr = (target or "").partition(":")
    if not module_name or not attr:
        raise ValueError(f"transport factory must look like 'module:callable', got {target!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"{target!r} is not callable")
    return factory


def is_group_id(conversation_id: Optional[str]) -> bool:
    return bool(conversation_id) and conversation_id.endswith(GROUP_SUFFIX)


def is_direct_id(conversation_id: Optional[str]) -> bool:
    return bool(conversation_id) and conversation_id.endswith(USER_SUFFIX)


def user_part(user_id: Optional[str]) -> str:
    if not user_id:
        return ""
    local = user_id.split("@", 1)[0]
    return local.split(":", 1)[0]
