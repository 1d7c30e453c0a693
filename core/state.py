"""Per-conversation ephemeral state: settings, warnings, counters and games."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .games import GameKind, GameResult, GameSession

log = logging.getLogger(__name__)

WARNING_LIMIT = 3
SWEEP_INTERVAL_SECONDS = 300

GAME_TTLS: Dict[GameKind, float] = {
    GameKind.TICTACTOE: 3600.0,
    GameKind.HANGMAN: 3600.0,
    GameKind.QUIZ: 300.0,
}

TIMEOUT_NOTICES: Dict[GameKind, str] = {
    GameKind.TICTACTOE: "⌛ Tic Tac Toe game timed out!",
    GameKind.HANGMAN: "⌛ Hangman game timed out!",
    GameKind.QUIZ: "⌛ Quiz timed out!",
}

SETTING_NAMES = (
    "welcome",
    "goodbye",
    "antilink",
    "antidelete",
    "autotyping",
    "autorecording",
    "autostatusview",
    "autoreact",
    "autoreacttostatus",
)

Notifier = Callable[[str, str], Awaitable[None]]


class GameExistsError(RuntimeError):
    def __init__(self, conversation_id: str, kind: GameKind) -> None:
        super().__init__(f"{kind.value} already running in {conversation_id}")
        self.conversation_id = conversation_id
        self.kind = kind


@dataclass
class MessageCounter:
    total: int = 0


class SettingsDocument:
    """JSON document mapping conversation id to its feature flags."""

    def __init__(self, path: Optional[Path]) -> None:
        self.path = Path(path) if path else None

    def load(self) -> Dict[str, Dict[str, bool]]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except Exception as exc:
            log.warning("failed to read settings %s: %s", self.path, exc)
            return {}
        if not isinstance(raw, dict):
            log.warning("ignoring settings %s: root is not object", self.path)
            return {}
        parsed: Dict[str, Dict[str, bool]] = {}
        for conversation_id, flags in raw.items():
            if not isinstance(flags, dict):
                continue
            parsed[str(conversation_id)] = {
                str(name): bool(value) for name, value in flags.items() if isinstance(value, bool)
            }
        return parsed

    def save(self, data: Dict[str, Dict[str, bool]]) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        except Exception as exc:
            log.warning("failed to persist settings %s: %s", self.path, exc)


class StateStore:
    """In-memory conversation state with per-conversation locking and TTL sweeps.

    Individual operations are synchronous, so each one is atomic on the event
    loop. Multi-step work for one conversation (a whole message, a sweep
    eviction) runs under :meth:`conversation_lock`.
    """

    def __init__(
        self,
        settings: Optional[SettingsDocument] = None,
        *,
        clock: Callable[[], float] = time.time,
        game_ttls: Optional[Dict[GameKind, float]] = None,
    ) -> None:
        self._clock = clock
        self._settings_doc = settings or SettingsDocument(None)
        self._settings: Dict[str, Dict[str, bool]] = self._settings_doc.load()
        self._warnings: Dict[str, Dict[str, int]] = {}
        self._games: Dict[Tuple[str, GameKind], GameSession] = {}
        self._counters: Dict[str, MessageCounter] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self.game_ttls = dict(GAME_TTLS)
        if game_ttls:
            self.game_ttls.update(game_ttls)
        self._sweeper: Optional[asyncio.Task] = None

    def now(self) -> float:
        return self._clock()

    def conversation_lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    # ----- settings -----
    def get_settings(self, conversation_id: str) -> Dict[str, bool]:
        return dict(self._settings.get(conversation_id, {}))

    def is_enabled(self, conversation_id: str, name: str) -> bool:
        return self._settings.get(conversation_id, {}).get(name) is True

    def set_setting(self, conversation_id: str, name: str, value: bool) -> None:
        if name not in SETTING_NAMES:
            raise KeyError(f"unknown setting {name!r}")
        self._settings.setdefault(conversation_id, {})[name] = bool(value)
        self._settings_doc.save(self._settings)
        log.info("setting %s=%s for %s", name, value, conversation_id)

    # ----- warnings -----
    def get_warnings(self, conversation_id: str, user_id: str) -> int:
        return self._warnings.get(conversation_id, {}).get(user_id, 0)

    def add_warning(self, conversation_id: str, user_id: str) -> int:
        tally = self._warnings.setdefault(conversation_id, {})
        tally[user_id] = tally.get(user_id, 0) + 1
        return tally[user_id]

    def reset_warnings(self, conversation_id: str, user_id: str) -> None:
        tally = self._warnings.get(conversation_id)
        if not tally:
            return
        tally.pop(user_id, None)
        if not tally:
            del self._warnings[conversation_id]

    # ----- message counters -----
    def record_message(self, conversation_id: str) -> int:
        counter = self._counters.setdefault(conversation_id, MessageCounter())
        counter.total += 1
        return counter.total

    def known_conversations(self) -> List[str]:
        return list(self._counters)

    def message_stats(self) -> Tuple[int, int]:
        return len(self._counters), sum(c.total for c in self._counters.values())

    # ----- games -----
    def create_game(self, conversation_id: str, game: GameSession) -> GameSession:
        key = (conversation_id, game.kind)
        if key in self._games:
            raise GameExistsError(conversation_id, game.kind)
        self._games[key] = game
        log.info("%s started in %s", game.kind.value, conversation_id)
        return game

    def get_game(self, conversation_id: str, kind: GameKind) -> Optional[GameSession]:
        return self._games.get((conversation_id, kind))

    def mutate_game(
        self,
        conversation_id: str,
        kind: GameKind,
        action: Callable[[GameSession], GameResult],
    ) -> Optional[GameResult]:
        """Apply ``action`` to the running game; terminal games are removed at once."""
        key = (conversation_id, kind)
        game = self._games.get(key)
        if game is None:
            return None
        result = action(game)
        if result.terminal:
            del self._games[key]
            log.info("%s in %s ended: %s", kind.value, conversation_id, result.outcome.value)
        else:
            self._games[key] = result.game
        return result

    def end_game(self, conversation_id: str, kind: GameKind) -> Optional[GameSession]:
        return self._games.pop((conversation_id, kind), None)

    def active_games(self) -> int:
        return len(self._games)

    def _is_expired(self, game: GameSession, now: float) -> bool:
        return now - game.created_at > self.game_ttls[game.kind]

    def expired_games(self, now: Optional[float] = None) -> List[Tuple[str, GameKind]]:
        now = self.now() if now is None else now
        return [key for key, game in self._games.items() if self._is_expired(game, now)]

    async def sweep(self, notify: Optional[Notifier] = None) -> List[Tuple[str, GameKind]]:
        evicted: List[Tuple[str, GameKind]] = []
        for conversation_id, kind in self.expired_games():
            async with self.conversation_lock(conversation_id):
                game = self._games.get((conversation_id, kind))
                if game is None or not self._is_expired(game, self.now()):
                    continue
                del self._games[(conversation_id, kind)]
                evicted.append((conversation_id, kind))
                log.info("%s in %s timed out", kind.value, conversation_id)
                if notify is None:
                    continue
                try:
                    await notify(conversation_id, TIMEOUT_NOTICES[kind])
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    log.warning("failed to send timeout notice to %s: %s", conversation_id, exc)
        return evicted

    async def run_sweeper(
        self, notify: Optional[Notifier] = None, *, interval: float = SWEEP_INTERVAL_SECONDS
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep(notify)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("game sweep failed")

    def start_sweeper(
        self, notify: Optional[Notifier] = None, *, interval: float = SWEEP_INTERVAL_SECONDS
    ) -> asyncio.Task:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self.run_sweeper(notify, interval=interval))
        return self._sweeper

    async def stop(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
