import itertools
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from models.errors import DuplicateRoomCodeError, NotFoundError
from models.game import GameState, PlayerState, ChatMessage, Personality

logger = logging.getLogger(__name__)


class RoomStore:
    """
    In-memory room / player / message records with a join-code index.

    Records are handed out as copies; callers change state only through the
    update methods. Every collection is keyed per room, so rooms never touch
    each other's data and no store-wide lock is needed on the event loop.
    """

    def __init__(self):
        self._games: Dict[str, GameState] = {}
        self._codes: Dict[str, str] = {}              # ROOM CODE -> game_id
        self._players: Dict[str, PlayerState] = {}
        self._roster: Dict[str, List[str]] = {}       # game_id -> player ids, join order
        self._chat: Dict[str, List[ChatMessage]] = {}
        self._seq = itertools.count(1)

    @staticmethod
    def normalize_code(room_code: str) -> str:
        return room_code.strip().upper()

    # ── Game CRUD ─────────────────────────────────────────────────────────────

    async def create_game(
        self,
        room_code: str,
        created_by: str,
        ai_personality: str = Personality.CASUAL.value,
    ) -> GameState:
        code = self.normalize_code(room_code)
        if code in self._codes:
            raise DuplicateRoomCodeError(f"Room code {code} is already in use")
        game = GameState(
            room_code=code,
            created_by=created_by,
            ai_personality=ai_personality,
        )
        self._games[game.id] = game
        self._codes[code] = game.id
        self._roster[game.id] = []
        self._chat[game.id] = []
        return game.model_copy()

    async def get_game(self, game_id: str) -> Optional[GameState]:
        game = self._games.get(game_id)
        return game.model_copy() if game else None

    async def update_game(self, game_id: str, updates: Dict[str, Any]) -> GameState:
        game = self._games.get(game_id)
        if not game:
            raise NotFoundError(f"Game {game_id} not found")
        game = game.model_copy(update=updates)
        self._games[game_id] = game
        return game.model_copy()

    async def delete_game(self, game_id: str) -> None:
        game = self._games.pop(game_id, None)
        if not game:
            return
        self._codes.pop(game.room_code, None)
        for player_id in self._roster.pop(game_id, []):
            self._players.pop(player_id, None)
        self._chat.pop(game_id, None)

    # ── Player CRUD ───────────────────────────────────────────────────────────

    async def add_player(self, game_id: str, name: str, is_ai: bool = False) -> PlayerState:
        if game_id not in self._games:
            raise NotFoundError(f"Game {game_id} not found")
        player = PlayerState(game_id=game_id, name=name, is_ai=is_ai)
        self._players[player.id] = player
        self._roster[game_id].append(player.id)
        return player.model_copy()

    async def get_player(self, player_id: str) -> Optional[PlayerState]:
        player = self._players.get(player_id)
        return player.model_copy() if player else None

    async def get_all_players(self, game_id: str) -> List[PlayerState]:
        return [self._players[pid].model_copy() for pid in self._roster.get(game_id, [])]

    async def update_player(self, player_id: str, updates: Dict[str, Any]) -> PlayerState:
        player = self._players.get(player_id)
        if not player:
            raise NotFoundError(f"Player {player_id} not found")
        player = player.model_copy(update=updates)
        self._players[player_id] = player
        return player.model_copy()

    async def set_player_connected(self, player_id: str, connected: bool) -> PlayerState:
        return await self.update_player(player_id, {"is_connected": connected})

    # ── Votes ─────────────────────────────────────────────────────────────────

    async def cast_vote(self, player_id: str, target_player_id: str) -> PlayerState:
        return await self.update_player(player_id, {"vote": target_player_id})

    async def clear_votes(self, game_id: str) -> None:
        for player_id in self._roster.get(game_id, []):
            if self._players[player_id].vote is not None:
                await self.update_player(player_id, {"vote": None})

    # ── Chat messages ─────────────────────────────────────────────────────────

    async def add_chat_message(
        self,
        game_id: str,
        player_id: str,
        content: str,
        timestamp: Optional[datetime] = None,
    ) -> ChatMessage:
        if game_id not in self._chat:
            raise NotFoundError(f"Game {game_id} not found")
        message = ChatMessage(
            game_id=game_id,
            player_id=player_id,
            content=content,
            seq=next(self._seq),
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        self._chat[game_id].append(message)
        return message

    async def get_chat_messages(self, game_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        messages = sorted(self._chat.get(game_id, []), key=lambda m: m.seq)
        if limit is not None:
            messages = messages[-limit:]
        return messages
