import random

import pytest

from core.games import (
    HANGMAN_TRIES,
    GameError,
    GameKind,
    Hangman,
    Outcome,
    Quiz,
    TicTacToe,
    game_content,
)


def _ttt(board, turn="alice"):
    return TicTacToe(players=("alice", "bob"), turn_owner=turn, created_at=0.0, board=tuple(board))


def test_completing_a_row_wins():
    game = _ttt(["X", "X", "", "O", "O", "", "", "", ""])
    result = game.move("alice", 3)
    assert result.outcome is Outcome.WIN
    assert result.winner == "alice"
    assert result.terminal
    assert result.game.board[:3] == ("X", "X", "X")


def test_full_board_without_line_is_draw():
    game = _ttt(["X", "O", "X", "X", "O", "O", "O", "X", ""])
    result = game.move("alice", 9)
    assert result.outcome is Outcome.DRAW
    assert result.winner is None


def test_move_out_of_turn_leaves_board_unchanged():
    game = _ttt(["X", "", "", "", "", "", "", "", ""], turn="bob")
    result = game.move("alice", 5)
    assert result.outcome is Outcome.ERROR
    assert result.error is GameError.NOT_YOUR_TURN
    assert result.game is game
    assert not result.terminal


def test_occupied_and_invalid_cells():
    game = _ttt(["X", "", "", "", "", "", "", "", ""])
    assert game.move("alice", 1).error is GameError.CELL_OCCUPIED
    assert game.move("alice", 0).error is GameError.INVALID_CELL
    assert game.move("alice", 10).error is GameError.INVALID_CELL


def test_valid_move_flips_turn_and_symbols():
    game = TicTacToe.start("alice", "bob", now=5.0)
    assert game.turn_owner == "alice"
    first = game.move("alice", 5)
    assert first.outcome is Outcome.CONTINUE
    assert first.game.turn_owner == "bob"
    assert first.game.board[4] == "X"
    second = first.game.move("bob", 1)
    assert second.game.board[0] == "O"
    assert second.game.turn_owner == "alice"
    assert game.board == ("",) * 9


def test_cannot_challenge_self():
    with pytest.raises(ValueError):
        TicTacToe.start("alice", "alice", now=0.0)


def test_hangman_wrong_guess_costs_one_try():
    game = Hangman.start(now=0.0, word="python")
    assert game.tries_remaining == HANGMAN_TRIES == 6
    result = game.guess("z")
    assert result.outcome is Outcome.CONTINUE
    assert result.game.tries_remaining == 5


def test_hangman_repeat_guess_is_rejected_without_cost():
    game = Hangman.start(now=0.0, word="python").guess("z").game
    again = game.guess("Z")
    assert again.error is GameError.ALREADY_GUESSED
    assert again.game.tries_remaining == 5


def test_hangman_reveals_every_occurrence():
    game = Hangman.start(now=0.0, word="banana")
    result = game.guess("a")
    assert result.game.display == "_ a _ a _ a"
    assert result.game.tries_remaining == 6


def test_hangman_win_regardless_of_tries_left():
    game = Hangman.start(now=0.0, word="ab")
    for letter in "xyzw":
        game = game.guess(letter).game
    assert game.tries_remaining == 2
    game = game.guess("a").game
    result = game.guess("b")
    assert result.outcome is Outcome.WIN
    assert result.terminal


def test_hangman_loss_when_tries_run_out():
    game = Hangman.start(now=0.0, word="python")
    for letter in "abcde":
        game = game.guess(letter).game
    result = game.guess("f")
    assert result.outcome is Outcome.LOSS
    assert result.game.tries_remaining == 0


@pytest.mark.parametrize("letter", ["", "ab", "1", "é", "?"])
def test_hangman_invalid_letters(letter):
    result = Hangman.start(now=0.0, word="python").guess(letter)
    assert result.error is GameError.INVALID_LETTER


def test_hangman_picks_from_word_list():
    game = Hangman.start(now=0.0, rng=random.Random(3))
    assert game.word in game_content()["hangman_words"]
    assert game.kind is GameKind.HANGMAN


def test_quiz_answer_is_case_insensitive_and_always_terminal():
    bank = [{"question": "Capital of France?", "choices": ["Paris", "Rome"], "answer": "Paris"}]
    quiz = Quiz.start(now=0.0, bank=bank, rng=random.Random(0))
    assert quiz.choices == ("Paris", "Rome")
    right = quiz.answer("  paris ")
    wrong = quiz.answer("Rome")
    assert right.outcome is Outcome.WIN and right.terminal
    assert wrong.outcome is Outcome.LOSS and wrong.terminal


def test_bundled_quiz_bank_is_well_formed():
    for entry in game_content()["quiz_bank"]:
        assert str(entry["answer"]) in [str(c) for c in entry["choices"]]
