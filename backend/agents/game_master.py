"""
Game Master — pure deterministic rules, no LLM, no I/O.

Responsibilities:
- Phase order (Lobby → Discussion → Voting → Ended, never backwards)
- Input validation for names, room codes and vote targets
- AI name draw from the fixed pool
- Vote tallying and the win condition

Room Session calls into this module while holding its room lock; nothing here
awaits, so every rule is applied atomically with the state change it guards.
"""
import logging
import random
import re
from typing import Dict, List, Optional

from models.errors import InvalidPhaseError, ValidationError
from models.game import Phase, PlayerState, VoteCount, VoteResult

logger = logging.getLogger(__name__)

# Pool the hidden AI player's display name is drawn from
AI_NAMES: List[str] = ["Mike_777", "Sarah_AI", "Alex_Bot", "Jamie_X", "Taylor_99"]

MAX_NAME_LENGTH = 50
_ROOM_CODE_RE = re.compile(r"^[A-Z0-9]{4,8}$")


class GameMaster:

    PHASE_ORDER = [
        Phase.LOBBY,
        Phase.DISCUSSION,
        Phase.VOTING,
        Phase.ENDED,
    ]

    # ── Phase transitions ──────────────────────────────────────────────────────

    def next_phase(self, current: Phase) -> Phase:
        """Return the phase that follows ``current``. Ended has no successor."""
        idx = self.PHASE_ORDER.index(current)
        if idx == len(self.PHASE_ORDER) - 1:
            raise InvalidPhaseError("The game has already ended")
        return self.PHASE_ORDER[idx + 1]

    def check_transition(self, current: Phase, target: Phase) -> None:
        """Only single forward steps are legal."""
        if target != self.next_phase(current):
            raise InvalidPhaseError(
                f"Cannot move from {current.value} to {target.value}"
            )

    def require_phase(self, current: Phase, *allowed: Phase, action: str = "do that") -> None:
        if current not in allowed:
            names = " or ".join(p.value for p in allowed)
            raise InvalidPhaseError(f"Cannot {action} during {current.value}; only during {names}")

    # ── Validation ─────────────────────────────────────────────────────────────

    def validate_name(self, name: Optional[str]) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("Name is required")
        if len(cleaned) > MAX_NAME_LENGTH:
            raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters")
        return cleaned

    def validate_room_code(self, room_code: Optional[str]) -> str:
        code = (room_code or "").strip().upper()
        if not _ROOM_CODE_RE.match(code):
            raise ValidationError("Room code must be 4-8 letters or digits")
        return code

    def validate_vote_target(self, target: Optional[str], players: List[PlayerState]) -> str:
        """Empty string means abstain; anything else must be a player in this room."""
        target = (target or "").strip()
        if target and target not in {p.id for p in players}:
            raise ValidationError(f"'{target}' is not a player in this game")
        return target

    # ── AI player ──────────────────────────────────────────────────────────────

    def pick_ai_name(self, rng: random.Random) -> str:
        return rng.choice(AI_NAMES)

    # ── Voting ─────────────────────────────────────────────────────────────────

    def all_humans_voted(self, players: List[PlayerState]) -> bool:
        """
        Quorum: every human has named a target. Abstentions do not count, so a
        room with an abstainer runs until the voting deadline.
        """
        humans = [p for p in players if not p.is_ai]
        return bool(humans) and all(p.vote for p in humans)

    def tally_votes(self, players: List[PlayerState], ai_player_id: str) -> VoteResult:
        """
        Count non-empty votes and decide the winner.

        The AI wins when nobody voted, or when it holds a strict minority of the
        votes cast (``ai_votes < total_votes / 2``). Receiving exactly half the
        votes is enough to catch it.
        """
        tally: Dict[str, int] = {}
        for p in players:
            if p.is_ai or not p.vote:
                continue
            tally[p.vote] = tally.get(p.vote, 0) + 1

        ai_player = next((p for p in players if p.id == ai_player_id), None)
        if ai_player is None:
            raise ValueError(f"AI player {ai_player_id} is not in the roster")

        ai_votes = tally.get(ai_player_id, 0)
        total_votes = sum(tally.values())
        ai_wins = total_votes == 0 or ai_votes < total_votes / 2

        # Every player with a count (0 by default); most votes first, then join order
        ranked = sorted(
            enumerate(players),
            key=lambda item: (-tally.get(item[1].id, 0), item[0]),
        )
        vote_results = [
            VoteCount(player=p, votes=tally.get(p.id, 0)) for _, p in ranked
        ]
        return VoteResult(ai_wins=ai_wins, ai_player=ai_player, vote_results=vote_results)


# Module-level singleton
game_master = GameMaster()
