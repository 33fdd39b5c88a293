"""
Session Registry — process-wide table of live Room Sessions.

Created once per process (lazily, via get_session_registry). Rooms are added
on creation and looked up by id or by join code. Ended rooms stay readable
for ``ended_room_ttl`` seconds, after which sweep_ended() evicts the session
together with its store records.
"""
import logging
import random
from datetime import timedelta
from typing import Dict, List, Optional

from agents.ai_responder import AIResponder
from agents.game_master import game_master
from config import Settings, settings as default_settings
from models.errors import NotFoundError, ValidationError
from models.game import Personality
from services.room_session import Clock, EventSink, RoomSession, _utcnow
from services.room_store import RoomStore

logger = logging.getLogger(__name__)


class SessionRegistry:

    def __init__(
        self,
        broadcast: EventSink,
        store: Optional[RoomStore] = None,
        responder: Optional[AIResponder] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
    ):
        self.broadcast = broadcast
        self.store = store or RoomStore()
        self.responder = responder or AIResponder.from_settings()
        self.rng = rng or random.Random()
        self.clock = clock or _utcnow
        self.config = config or default_settings
        self._sessions: Dict[str, RoomSession] = {}
        self._codes: Dict[str, str] = {}  # ROOM CODE -> game_id

    def __len__(self) -> int:
        return len(self._sessions)

    async def create_room(
        self,
        room_code: str,
        created_by: str,
        ai_personality: str = Personality.CASUAL.value,
    ) -> RoomSession:
        code = game_master.validate_room_code(room_code)
        created_by = game_master.validate_name(created_by)
        try:
            personality = Personality(ai_personality)
        except ValueError:
            raise ValidationError(f"Unknown AI personality: {ai_personality}")

        game = await self.store.create_game(code, created_by, personality.value)
        session = RoomSession(
            game,
            store=self.store,
            broadcast=self.broadcast,
            responder=self.responder,
            rng=self.rng,
            clock=self.clock,
            config=self.config,
        )
        self._sessions[game.id] = session
        self._codes[game.room_code] = game.id
        logger.info("[%s] Room %s created by %s (%s AI)", game.id, code, created_by, personality.value)
        return session

    def find(self, game_id: str) -> Optional[RoomSession]:
        return self._sessions.get(game_id)

    def get(self, game_id: str) -> RoomSession:
        session = self._sessions.get(game_id)
        if not session:
            raise NotFoundError("Game not found")
        return session

    def get_by_code(self, room_code: str) -> RoomSession:
        game_id = self._codes.get(RoomStore.normalize_code(room_code or ""))
        if not game_id:
            raise NotFoundError("Game room not found")
        return self.get(game_id)

    async def remove(self, game_id: str) -> None:
        session = self._sessions.pop(game_id, None)
        if not session:
            return
        self._codes.pop(session.room_code, None)
        await session.close()
        await self.store.delete_game(game_id)
        logger.info("[%s] Room %s evicted", game_id, session.room_code)

    async def sweep_ended(self) -> List[str]:
        """Evict rooms that ended more than ``ended_room_ttl`` seconds ago."""
        cutoff = self.clock() - timedelta(seconds=self.config.ended_room_ttl)
        expired = [
            game_id for game_id, session in self._sessions.items()
            if session.ended_at is not None and session.ended_at <= cutoff
        ]
        for game_id in expired:
            await self.remove(game_id)
        return expired

    async def close_all(self) -> None:
        for session in list(self._sessions.values()):
            await session.close()


_session_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """Lazy singleton wired to the WebSocket hub's broadcast.
    Use as a FastAPI dependency: Depends(get_session_registry)
    """
    global _session_registry
    if _session_registry is None:
        from routers.ws_router import manager
        _session_registry = SessionRegistry(broadcast=manager.broadcast)
    return _session_registry
