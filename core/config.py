import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

DEFAULT_BOT_NAME = "VORTE PRO"
DEFAULT_PREFIX = "."


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def _parse_numbers(raw: Optional[str]) -> List[str]:
    numbers = []
    for chunk in (raw or "").split(","):
        digits = "".join(ch for ch in chunk if ch.isdigit())
        if digits:
            numbers.append(digits)
    return numbers


def _port(raw: Optional[str], default: int) -> int:
    return int(raw) if raw and raw.isdigit() else default


@dataclass
class BotConfig:
    transport_factory: str
    bot_name: str = DEFAULT_BOT_NAME
    prefix: str = DEFAULT_PREFIX
    owner_numbers: List[str] = field(default_factory=list)
    session_folder: Path = Path("session")
    session_id: Optional[str] = None
    settings_path: Path = Path("groupSettings.json")
    port: int = 3000
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    youtube_api_key: Optional[str] = None
    omdb_api_key: Optional[str] = None
    keepalive_url: Optional[str] = None
    log_level: str = "INFO"
    version: str = "1.0.0"

    def is_owner(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        local = user_id.split("@", 1)[0].split(":", 1)[0]
        digits = "".join(ch for ch in local if ch.isdigit())
        return bool(digits) and digits in self.owner_numbers


@dataclass
class SessionServerConfig:
    transport_factory: str
    port: int = 3001
    sessions_dir: Path = Path("tmp_sessions")
    log_level: str = "INFO"


def load_bot_config() -> BotConfig:
    factory = _getenv("TRANSPORT_FACTORY")
    if not factory:
        raise SystemExit("missing TRANSPORT_FACTORY")
    return BotConfig(
        transport_factory=factory,
        bot_name=_getenv("BOT_NAME", DEFAULT_BOT_NAME),
        prefix=_getenv("PREFIX", DEFAULT_PREFIX),
        owner_numbers=_parse_numbers(_getenv("OWNER_NUMBERS")),
        session_folder=Path(_getenv("SESSION_FOLDER", "session")),
        session_id=_getenv("SESSION_ID"),
        settings_path=Path(_getenv("SETTINGS_PATH", "groupSettings.json")),
        port=_port(_getenv("PORT"), 3000),
        openai_api_key=_getenv("OPENAI_API_KEY"),
        openai_model=_getenv("OPENAI_MODEL", "gpt-4o-mini"),
        youtube_api_key=_getenv("YOUTUBE_API_KEY"),
        omdb_api_key=_getenv("IMDB_API_KEY"),
        keepalive_url=_getenv("KEEPALIVE_URL"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
    )


def load_session_server_config() -> SessionServerConfig:
    factory = _getenv("TRANSPORT_FACTORY")
    if not factory:
        raise SystemExit("missing TRANSPORT_FACTORY")
    return SessionServerConfig(
        transport_factory=factory,
        port=_port(_getenv("PORT") or _getenv("SESSION_PORT"), 3001),
        sessions_dir=Path(_getenv("TMP_SESSIONS_DIR", "tmp_sessions")),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
    )
