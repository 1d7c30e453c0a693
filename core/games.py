"""Mini-game state machines.

Each engine is an immutable dataclass; actions return a :class:`GameResult`
holding the next state. Engines never touch the transport; rendering is done
by the command handlers.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import yaml

DATA_FILE = Path(__file__).with_name("data").joinpath("games.yaml")

HANGMAN_TRIES = 6

WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),
    (0, 3, 6), (1, 4, 7), (2, 5, 8),
    (0, 4, 8), (2, 4, 6),
)


class GameKind(str, Enum):
    TICTACTOE = "tictactoe"
    HANGMAN = "hangman"
    QUIZ = "quiz"


class Outcome(str, Enum):
    CONTINUE = "continue"
    WIN = "win"
    DRAW = "draw"
    LOSS = "loss"
    ERROR = "error"


class GameError(str, Enum):
    NOT_YOUR_TURN = "not_your_turn"
    CELL_OCCUPIED = "cell_occupied"
    INVALID_CELL = "invalid_cell"
    ALREADY_GUESSED = "already_guessed"
    INVALID_LETTER = "invalid_letter"


@dataclass(frozen=True)
class GameResult:
    outcome: Outcome
    game: "GameSession"
    error: Optional[GameError] = None
    winner: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.outcome in (Outcome.WIN, Outcome.DRAW, Outcome.LOSS)


@lru_cache(maxsize=None)
def _load_content(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: root must be a mapping")
    return data


def game_content(path: Optional[Path] = None) -> Dict[str, Any]:
    return _load_content(str(path or DATA_FILE))


@dataclass(frozen=True)
class TicTacToe:
    players: Tuple[str, str]
    turn_owner: str
    created_at: float
    board: Tuple[str, ...] = ("",) * 9

    kind = GameKind.TICTACTOE

    @classmethod
    def start(cls, challenger: str, opponent: str, *, now: float) -> "TicTacToe":
        if challenger == opponent:
            raise ValueError("a player cannot challenge themselves")
        return cls(players=(challenger, opponent), turn_owner=challenger, created_at=now)

    def symbol_for(self, player: str) -> str:
        return "X" if player == self.players[0] else "O"

    def player_for(self, symbol: str) -> str:
        return self.players[0] if symbol == "X" else self.players[1]

    def move(self, player: str, cell: int) -> GameResult:
        if player != self.turn_owner:
            return GameResult(Outcome.ERROR, self, error=GameError.NOT_YOUR_TURN)
        if not isinstance(cell, int) or not 1 <= cell <= 9:
            return GameResult(Outcome.ERROR, self, error=GameError.INVALID_CELL)
        if self.board[cell - 1]:
            return GameResult(Outcome.ERROR, self, error=GameError.CELL_OCCUPIED)

        board = list(self.board)
        board[cell - 1] = self.symbol_for(player)
        placed = replace(self, board=tuple(board))

        for a, b, c in WINNING_LINES:
            if board[a] and board[a] == board[b] == board[c]:
                return GameResult(Outcome.WIN, placed, winner=self.player_for(board[a]))
        if all(board):
            return GameResult(Outcome.DRAW, placed)

        other = self.players[1] if player == self.players[0] else self.players[0]
        return GameResult(Outcome.CONTINUE, replace(placed, turn_owner=other))


@dataclass(frozen=True)
class Hangman:
    word: str
    revealed: Tuple[str, ...]
    created_at: float
    tries_remaining: int = HANGMAN_TRIES
    guessed: Tuple[str, ...] = ()

    kind = GameKind.HANGMAN

    @classmethod
    def start(
        cls,
        *,
        now: float,
        word: Optional[str] = None,
        words: Optional[Sequence[str]] = None,
        rng: Optional[random.Random] = None,
    ) -> "Hangman":
        if word is None:
            pool = list(words or game_content()["hangman_words"])
            word = (rng or random).choice(pool)
        word = word.lower()
        return cls(word=word, revealed=("_",) * len(word), created_at=now)

    @property
    def display(self) -> str:
        return " ".join(self.revealed)

    def guess(self, letter: str) -> GameResult:
        letter = (letter or "").strip().lower()
        if len(letter) != 1 or not ("a" <= letter <= "z"):
            return GameResult(Outcome.ERROR, self, error=GameError.INVALID_LETTER)
        if letter in self.guessed:
            return GameResult(Outcome.ERROR, self, error=GameError.ALREADY_GUESSED)

        revealed = tuple(
            ch if ch == letter else shown for ch, shown in zip(self.word, self.revealed)
        )
        tries = self.tries_remaining
        if letter not in self.word:
            tries -= 1
        updated = replace(
            self, revealed=revealed, tries_remaining=tries, guessed=self.guessed + (letter,)
        )
        if "".join(revealed) == self.word:
            return GameResult(Outcome.WIN, updated)
        if tries <= 0:
            return GameResult(Outcome.LOSS, updated)
        return GameResult(Outcome.CONTINUE, updated)


@dataclass(frozen=True)
class Quiz:
    question: str
    choices: Tuple[str, ...]
    correct_answer: str
    created_at: float

    kind = GameKind.QUIZ

    @classmethod
    def start(
        cls,
        *,
        now: float,
        bank: Optional[Sequence[Dict[str, Any]]] = None,
        rng: Optional[random.Random] = None,
    ) -> "Quiz":
        entries: List[Dict[str, Any]] = list(bank or game_content()["quiz_bank"])
        entry = (rng or random).choice(entries)
        return cls(
            question=str(entry["question"]),
            choices=tuple(str(choice) for choice in entry.get("choices") or ()),
            correct_answer=str(entry["answer"]),
            created_at=now,
        )

    def answer(self, text: str) -> GameResult:
        if (text or "").strip().lower() == self.correct_answer.strip().lower():
            return GameResult(Outcome.WIN, self)
        return GameResult(Outcome.LOSS, self)


GameSession = Union[TicTacToe, Hangman, Quiz]
