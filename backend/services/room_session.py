"""
Room Session — the authoritative state machine for one game room.

Lifecycle:
  lobby       players join (max 8); the creator starts once 4+ are present
  discussion  open chat; every human line schedules one delayed AI reply
  voting      each human votes once; ends on quorum or when the clock runs out
  ended       terminal; results are kept for late readers

Every mutation runs under the room's asyncio.Lock, including the ticker's
deadline checks and the append step of AI replies, so a deadline firing and a
vote arriving in the same instant are applied one after the other. Events are
broadcast while the lock is held, which keeps broadcast order equal to append
order. AI generation itself runs in detached tasks outside the lock.
"""
import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from agents.ai_responder import AIContext, AIResponder, ChatLine
from agents.game_master import game_master
from config import Settings, settings as default_settings
from models.errors import (
    AlreadyVotedError, CapacityError, NotCreatorError, NotFoundError, ValidationError,
)
from models.game import (
    ChatMessage, GameSnapshot, GameState, Phase, PlayerState, VoteResult,
)
from services.room_store import RoomStore

logger = logging.getLogger(__name__)

# (game_id, event) -> None; the Connection Hub's broadcast
EventSink = Callable[[str, Dict[str, Any]], Awaitable[None]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoomSession:

    def __init__(
        self,
        game: GameState,
        store: RoomStore,
        broadcast: EventSink,
        responder: AIResponder,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
    ):
        self.game_id = game.id
        self.room_code = game.room_code
        self.store = store
        self.responder = responder
        self.rng = rng or random.Random()
        self.clock = clock or _utcnow
        self.config = config or default_settings
        self._broadcast = broadcast
        self._lock = asyncio.Lock()
        self._ticker: Optional[asyncio.Task] = None
        self._ai_tasks: Set[asyncio.Task] = set()
        self._connections: Dict[str, int] = {}  # player_id -> live connection count
        self.result: Optional[VoteResult] = None
        self.ended_at: Optional[datetime] = None

    # ── Reads ──────────────────────────────────────────────────────────────────

    async def _game(self) -> GameState:
        game = await self.store.get_game(self.game_id)
        if not game:
            raise NotFoundError(f"Game {self.game_id} not found")
        return game

    async def _player(self, player_id: str) -> PlayerState:
        player = await self.store.get_player(player_id)
        if not player or player.game_id != self.game_id:
            raise NotFoundError("Player not found in this game")
        return player

    async def _snapshot(self) -> GameSnapshot:
        return GameSnapshot(
            game=await self._game(),
            players=await self.store.get_all_players(self.game_id),
            messages=await self.store.get_chat_messages(self.game_id),
            results=self.result,
        )

    async def snapshot(self) -> GameSnapshot:
        """Full room state as every connection of the room currently sees it."""
        async with self._lock:
            return await self._snapshot()

    # ── Lobby ──────────────────────────────────────────────────────────────────

    async def join(self, name: str) -> Tuple[GameState, PlayerState]:
        name = game_master.validate_name(name)
        async with self._lock:
            game = await self._game()
            game_master.require_phase(game.status, Phase.LOBBY, action="join")
            players = await self.store.get_all_players(self.game_id)
            if len(players) >= self.config.max_players:
                raise CapacityError("Game room is full", code="ROOM_FULL")

            player = await self.store.add_player(self.game_id, name)
            logger.info("[%s] %s joined (%d/%d)", self.game_id, name, len(players) + 1, self.config.max_players)
            await self._broadcast(self.game_id, {
                "type": "playerJoined",
                "player": player.to_public(),
            })
            return game, player

    async def start(self, requested_by: str) -> Tuple[GameState, List[PlayerState]]:
        """
        Creator-only. Authorization is a plain name comparison against
        ``created_by``: the game trusts self-declared names.
        """
        async with self._lock:
            game = await self._game()
            if requested_by != game.created_by:
                raise NotCreatorError("Only the room creator can start the game")
            game_master.check_transition(game.status, Phase.DISCUSSION)

            players = await self.store.get_all_players(self.game_id)
            if len(players) < self.config.min_players:
                raise CapacityError(
                    f"Need at least {self.config.min_players} players to start",
                    code="NOT_ENOUGH_PLAYERS",
                )

            await self.store.clear_votes(self.game_id)
            ai_player = await self.store.add_player(
                self.game_id, game_master.pick_ai_name(self.rng), is_ai=True,
            )
            game = await self._transition(Phase.DISCUSSION, {
                "ai_player_id": ai_player.id,
                "discussion_ends_at": self.clock() + timedelta(seconds=self.config.discussion_seconds),
            })
            players = await self.store.get_all_players(self.game_id)
            logger.info(
                "[%s] Game started with %d humans; AI is %s",
                self.game_id, len(players) - 1, ai_player.name,
            )
            await self._broadcast_phase(game, players)
            self._start_ticker()
            return game, players

    # ── Connections ────────────────────────────────────────────────────────────

    async def connect(
        self,
        player_id: str,
        on_connect: Optional[Callable[[GameSnapshot], Awaitable[None]]] = None,
    ) -> GameSnapshot:
        """
        Attach a live connection for ``player_id``; safe to repeat on reconnect.

        ``on_connect`` runs under the room lock with the snapshot, so a hub can
        register the connection and deliver the snapshot before any later
        event of this room reaches it.
        """
        async with self._lock:
            player = await self._player(player_id)
            self._connections[player_id] = self._connections.get(player_id, 0) + 1
            if not player.is_connected:
                await self.store.set_player_connected(player_id, True)
                await self._broadcast(self.game_id, {
                    "type": "playerConnection",
                    "playerId": player_id,
                    "isConnected": True,
                })
            snapshot = await self._snapshot()
            if on_connect is not None:
                await on_connect(snapshot)
            return snapshot

    async def disconnect(self, player_id: str) -> None:
        """
        Drop one live connection. The player is shown as disconnected once
        the last one is gone, but stays in the roster and in the voting quorum.
        """
        async with self._lock:
            remaining = self._connections.get(player_id, 0) - 1
            if remaining > 0:
                self._connections[player_id] = remaining
                return
            self._connections.pop(player_id, None)
            player = await self.store.get_player(player_id)
            if not player or not player.is_connected:
                return
            await self.store.set_player_connected(player_id, False)
            logger.info("[%s] %s disconnected", self.game_id, player.name)
            await self._broadcast(self.game_id, {
                "type": "playerConnection",
                "playerId": player_id,
                "isConnected": False,
            })

    # ── Chat ───────────────────────────────────────────────────────────────────

    async def send_message(self, player_id: str, content: str) -> ChatMessage:
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty")
        text = text[: self.config.max_message_length]

        async with self._lock:
            game = await self._game()
            game_master.require_phase(
                game.status, Phase.LOBBY, Phase.DISCUSSION, Phase.VOTING, action="chat",
            )
            player = await self._player(player_id)
            message = await self._append_message(player, text)

            if game.status == Phase.DISCUSSION and not player.is_ai and game.ai_player_id:
                self._schedule_ai_reply()
            return message

    async def _append_message(self, player: PlayerState, text: str) -> ChatMessage:
        message = await self.store.add_chat_message(self.game_id, player.id, text, timestamp=self.clock())
        await self._broadcast(self.game_id, {
            "type": "message",
            "message": message.to_public(),
            "player": player.to_public(),
        })
        return message

    # ── Voting ─────────────────────────────────────────────────────────────────

    async def cast_vote(self, player_id: str, target_player_id: Optional[str]) -> PlayerState:
        async with self._lock:
            game = await self._game()
            game_master.require_phase(game.status, Phase.VOTING, action="vote")
            player = await self._player(player_id)
            if player.is_ai:
                raise ValidationError("AI players do not vote")
            if player.vote is not None:
                raise AlreadyVotedError("You have already voted")

            players = await self.store.get_all_players(self.game_id)
            target = game_master.validate_vote_target(target_player_id, players)
            player = await self.store.cast_vote(player_id, target)
            logger.info("[%s] %s voted%s", self.game_id, player.name, "" if target else " (abstain)")

            # Quorum check shares the lock with the vote that completes it
            players = await self.store.get_all_players(self.game_id)
            if game_master.all_humans_voted(players):
                await self._end(players)
            return player

    # ── Phase control ──────────────────────────────────────────────────────────

    async def advance(self) -> GameState:
        """Force the next phase: discussion → voting, or voting → ended."""
        async with self._lock:
            game = await self._game()
            game_master.require_phase(game.status, Phase.DISCUSSION, Phase.VOTING, action="advance")
            if game.status == Phase.DISCUSSION:
                return await self._enter_voting()
            await self._end(await self.store.get_all_players(self.game_id))
            return await self._game()

    async def tick(self) -> Phase:
        """Apply any deadline that has passed. Returns the phase afterwards."""
        async with self._lock:
            game = await self._game()
            now = self.clock()
            if game.status == Phase.DISCUSSION and game.discussion_ends_at and now >= game.discussion_ends_at:
                logger.info("[%s] Discussion time is up", self.game_id)
                game = await self._enter_voting()
            elif game.status == Phase.VOTING and game.voting_ends_at and now >= game.voting_ends_at:
                logger.info("[%s] Voting time is up", self.game_id)
                await self._end(await self.store.get_all_players(self.game_id))
                game = await self._game()
            return game.status

    async def _transition(self, target: Phase, updates: Optional[Dict[str, Any]] = None) -> GameState:
        game = await self._game()
        game_master.check_transition(game.status, target)
        fields = dict(updates or {})
        fields["status"] = target
        game = await self.store.update_game(self.game_id, fields)
        logger.info("[%s] Phase → %s", self.game_id, target.value)
        return game

    async def _enter_voting(self) -> GameState:
        game = await self._transition(Phase.VOTING, {
            "voting_ends_at": self.clock() + timedelta(seconds=self.config.voting_seconds),
        })
        await self._broadcast_phase(game, await self.store.get_all_players(self.game_id))
        return game

    async def _end(self, players: List[PlayerState]) -> VoteResult:
        game = await self._transition(Phase.ENDED)
        self.result = game_master.tally_votes(players, game.ai_player_id)
        self.ended_at = self.clock()
        logger.info(
            "[%s] Game over — %s",
            self.game_id, "AI wins" if self.result.ai_wins else "humans win",
        )
        await self._broadcast_phase(game, players)
        await self._broadcast(self.game_id, {
            "type": "gameEnded",
            "results": self.result.to_public(),
        })
        return self.result

    async def _broadcast_phase(self, game: GameState, players: List[PlayerState]) -> None:
        await self._broadcast(self.game_id, {
            "type": "gamePhaseChanged",
            "game": game.to_public(),
            "players": [p.to_public() for p in players],
        })

    # ── Ticker ─────────────────────────────────────────────────────────────────

    def _start_ticker(self) -> None:
        if self._ticker is None or self._ticker.done():
            self._ticker = asyncio.create_task(self._run_ticker())

    async def _run_ticker(self) -> None:
        while True:
            await asyncio.sleep(self.config.tick_interval)
            try:
                phase = await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[%s] Deadline check failed", self.game_id)
                continue
            if phase == Phase.ENDED:
                return

    # ── AI replies ─────────────────────────────────────────────────────────────

    def _schedule_ai_reply(self) -> None:
        low, high = self.config.ai_reply_min_delay, self.config.ai_reply_max_delay
        delay = low + self.rng.random() * (high - low)
        task = asyncio.create_task(self._ai_reply(delay))
        self._ai_tasks.add(task)
        task.add_done_callback(self._ai_tasks.discard)

    async def _ai_reply(self, delay: float) -> None:
        """Background task: wait, generate, append. Stale replies are dropped."""
        try:
            await asyncio.sleep(delay)
            game = await self._game()
            if game.status != Phase.DISCUSSION or not game.ai_player_id:
                logger.debug("[%s] Dropping AI reply; phase is %s", self.game_id, game.status.value)
                return

            players = await self.store.get_all_players(self.game_id)
            names = {p.id: p for p in players}
            history = await self.store.get_chat_messages(self.game_id)
            context = AIContext(
                messages=[
                    ChatLine(
                        player_name=names[m.player_id].name if m.player_id in names else "Unknown",
                        content=m.content,
                        is_ai=names[m.player_id].is_ai if m.player_id in names else False,
                    )
                    for m in history
                ],
                human_names=[p.name for p in players if not p.is_ai],
                game_phase=game.status.value,
            )
            text = await self.responder.generate(game.ai_personality.value, context)

            async with self._lock:
                game = await self._game()
                if game.status != Phase.DISCUSSION:
                    logger.debug("[%s] Discussion closed while AI was typing", self.game_id)
                    return
                ai_player = await self._player(game.ai_player_id)
                await self._append_message(ai_player, text)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[%s] AI reply failed", self.game_id)

    async def wait_for_ai_replies(self) -> None:
        """Block until every scheduled AI reply has fired or been dropped."""
        while self._ai_tasks:
            await asyncio.gather(*list(self._ai_tasks), return_exceptions=True)

    # ── Shutdown ───────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Cancel the ticker and any pending AI replies."""
        tasks = list(self._ai_tasks)
        if self._ticker is not None:
            tasks.append(self._ticker)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._ai_tasks.clear()
        self._ticker = None
