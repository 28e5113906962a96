"""Authoritative Codenames game document for one room."""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
import logging

import config
from errors import ActionRejected
from roles import Team

logger = logging.getLogger(__name__)


class CardType(str, Enum):
    RED = "red"
    BLUE = "blue"
    NEUTRAL = "neutral"
    ASSASSIN = "assassin"


class Phase(str, Enum):
    SETUP = "setup"  # no board yet
    CLUE = "clue"
    GUESS = "guess"
    GAME_OVER = "game_over"


@dataclass
class Card:
    word: str
    card_type: CardType
    revealed: bool = False

    def to_dict(self, full: bool) -> dict:
        data = {"word": self.word, "revealed": self.revealed}
        # Unrevealed card types are the secret operatives must never see
        if full or self.revealed:
            data["type"] = self.card_type.value
        return data


class GameState:
    """Board, turn, clue and scores, plus a revision counter.

    Every accepted mutation goes through ``_commit`` and advances ``revision``
    by exactly one. Rejected actions raise ``ActionRejected`` before touching
    anything.
    """

    def __init__(self):
        self.revision = 0
        self.cards: List[Card] = []
        self.starting_team: Optional[Team] = None
        self.turn: Optional[Team] = None
        self.phase = Phase.SETUP
        self.clue: Optional[dict] = None
        self.guesses_remaining: Optional[int] = 0  # None = unlimited
        self.winner: Optional[Team] = None

    @property
    def ready(self) -> bool:
        return bool(self.cards)

    # --- Mutations ---

    def load_board(self, cards: list, starting_team: Team) -> dict:
        if len(cards) != config.BOARD_SIZE:
            raise ValueError(f"Board must have {config.BOARD_SIZE} cards, got {len(cards)}")
        self.cards = [Card(word=c["word"], card_type=CardType(c["type"])) for c in cards]
        self.starting_team = starting_team
        self.turn = starting_team
        self.phase = Phase.CLUE
        self.clue = None
        self.guesses_remaining = 0
        self.winner = None
        return self._commit({"action": "new_game", "starting_team": starting_team.value})

    def give_clue(self, team: Team, word, number) -> dict:
        self._require_turn(team, Phase.CLUE)

        if not isinstance(word, str):
            raise ActionRejected("invalid_clue", "Clue must be a word")
        word = word.strip().upper()
        if not word or len(word.split()) != 1 or len(word) > config.MAX_CLUE_LENGTH:
            raise ActionRejected("invalid_clue", "Clue must be a single word")
        if any(not c.revealed and c.word == word for c in self.cards):
            raise ActionRejected("invalid_clue", "Clue can't be a word on the board")
        if isinstance(number, bool) or not isinstance(number, int) \
                or not 0 <= number <= config.MAX_CLUE_NUMBER:
            raise ActionRejected("invalid_clue",
                                 f"Clue number must be 0-{config.MAX_CLUE_NUMBER}")

        self.clue = {"word": word, "number": number, "team": team.value}
        self.guesses_remaining = number + 1 if number > 0 else None
        self.phase = Phase.GUESS
        return self._commit({"action": "clue", "team": team.value,
                             "word": word, "number": number})

    def reveal(self, index, team: Optional[Team] = None) -> dict:
        """Reveal a card for the team whose turn it is. ``team`` is None when the
        host reveals on the active team's behalf."""
        self._require_turn(team, Phase.GUESS)

        if isinstance(index, bool) or not isinstance(index, int) \
                or not 0 <= index < len(self.cards):
            raise ActionRejected("invalid_card", "No such card")
        card = self.cards[index]
        if card.revealed:
            raise ActionRejected("card_already_revealed", f"{card.word} is already revealed")

        acting = self.turn
        card.revealed = True
        action = {"action": "reveal", "team": acting.value, "index": index,
                  "word": card.word, "type": card.card_type.value}

        if card.card_type is CardType.ASSASSIN:
            self._finish(acting.other)
        elif card.card_type.value == acting.value:
            if self.remaining(acting) == 0:
                self._finish(acting)
            else:
                if self.guesses_remaining is not None:
                    self.guesses_remaining -= 1
                if self.guesses_remaining == 0:
                    self._pass_turn()
        else:
            opponent = acting.other
            if card.card_type.value == opponent.value and self.remaining(opponent) == 0:
                self._finish(opponent)
            else:
                self._pass_turn()

        if self.winner is not None:
            action["winner"] = self.winner.value
        return self._commit(action)

    def end_turn(self, team: Optional[Team] = None) -> dict:
        self._require_turn(team, Phase.GUESS)
        acting = self.turn
        self._pass_turn()
        return self._commit({"action": "end_turn", "team": acting.value})

    # --- Queries ---

    def score(self, team: Team) -> int:
        return sum(1 for c in self.cards if c.revealed and c.card_type.value == team.value)

    def remaining(self, team: Team) -> int:
        return sum(1 for c in self.cards if not c.revealed and c.card_type.value == team.value)

    def to_dict(self, full: bool) -> dict:
        return {
            "revision": self.revision,
            "board_ready": self.ready,
            "cards": [c.to_dict(full) for c in self.cards],
            "starting_team": self.starting_team.value if self.starting_team else None,
            "turn": self.turn.value if self.turn else None,
            "phase": self.phase.value,
            "clue": dict(self.clue) if self.clue else None,
            "guesses_remaining": self.guesses_remaining,
            "winner": self.winner.value if self.winner else None,
            "scores": {t.value: self.score(t) for t in Team},
            "remaining": {t.value: self.remaining(t) for t in Team},
        }

    # --- Internals ---

    def _require_turn(self, team: Optional[Team], phase: Phase):
        if not self.ready:
            raise ActionRejected("board_not_ready", "The board hasn't been dealt yet")
        if self.phase is Phase.GAME_OVER:
            raise ActionRejected("game_over", "The game is over")
        if team is not None and team is not self.turn:
            raise ActionRejected("not_your_turn", f"It's {self.turn.value}'s turn")
        if self.phase is not phase:
            raise ActionRejected("wrong_phase", f"Not allowed during the {self.phase.value} phase")

    def _pass_turn(self):
        self.turn = self.turn.other
        self.phase = Phase.CLUE
        self.clue = None
        self.guesses_remaining = 0

    def _finish(self, winner: Team):
        self.winner = winner
        self.phase = Phase.GAME_OVER
        self.clue = None
        self.guesses_remaining = 0
        logger.info("Game over, %s wins", winner.value)

    def _commit(self, action: dict) -> dict:
        self.revision += 1
        action["revision"] = self.revision
        return action
