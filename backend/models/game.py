from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, timezone
import uuid


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class Phase(str, Enum):
    LOBBY = "lobby"
    DISCUSSION = "discussion"
    VOTING = "voting"
    ENDED = "ended"


class Personality(str, Enum):
    CASUAL = "casual"
    FUNNY = "funny"
    SERIOUS = "serious"
    SHY = "shy"


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python; either accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_public(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class PlayerState(_WireModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    game_id: str
    name: str
    is_ai: bool = Field(default=False, alias="isAI")
    is_connected: bool = True
    # None = has not voted yet, "" = abstained, otherwise a player id
    vote: Optional[str] = None
    joined_at: datetime = Field(default_factory=_utcnow)


class GameState(_WireModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    room_code: str
    status: Phase = Phase.LOBBY
    created_by: str
    ai_personality: Personality = Personality.CASUAL
    discussion_ends_at: Optional[datetime] = None
    voting_ends_at: Optional[datetime] = None
    ai_player_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ChatMessage(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    game_id: str
    player_id: str
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    seq: int = 0  # store-wide creation order; messages are listed by it


class VoteCount(_WireModel):
    player: PlayerState
    votes: int


class VoteResult(_WireModel):
    ai_wins: bool
    ai_player: PlayerState
    vote_results: List[VoteCount] = []


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateGameRequest(_WireModel):
    room_code: str = Field(min_length=4, max_length=8, pattern=r"^[A-Za-z0-9]+$")
    created_by: str = Field(min_length=1, max_length=50)
    ai_personality: Personality = Personality.CASUAL


class JoinGameRequest(_WireModel):
    name: str = Field(min_length=1, max_length=50)


class JoinGameResponse(_WireModel):
    game: GameState
    player: PlayerState


class StartGameResponse(_WireModel):
    game: GameState
    players: List[PlayerState]


class GameSnapshot(_WireModel):
    game: GameState
    players: List[PlayerState]
    messages: List[ChatMessage]
    results: Optional[VoteResult] = None  # set once the game has ended


class PersonalityInfo(_WireModel):
    id: Personality
    name: str
