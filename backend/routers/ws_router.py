"""
WebSocket Hub — real-time multiplayer connection management.

URL: /ws

Connection flow:
  1. Accept connection (not yet bound to a room)
  2. Client sends "join" {gameId, playerId} → connection registered with the
     room and a private "gameState" snapshot is sent
  3. Message loop (handle_message dispatcher)
  4. On disconnect: unregister, let the Room Session mark the player offline

Client → server message types handled here:
  join         — bind this connection to (game, player); repeat to reconnect
  sendMessage  — chat line from this connection's player
  vote         — {targetPlayerId}; "" abstains (voting phase only)
  ping         — keep-alive heartbeat → responds with "pong"

Errors are sent only to the connection that caused them, never broadcast.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from config import settings
from models.errors import GameError, NotFoundError, ValidationError
from models.game import GameSnapshot
from services.session_registry import SessionRegistry, get_session_registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


# ── Connection Manager ─────────────────────────────────────────────────────────

class ConnectionManager:
    """
    Tracks live WebSocket connections per game.

    Starlette WebSockets are unhashable, so connections are keyed by id().
    Broadcasts fan out concurrently and each send is bounded by a timeout; a
    connection that fails or times out is dropped from its room's fan-out set
    but keeps its ownership record until the endpoint unregisters it.
    """

    def __init__(self, send_timeout: Optional[float] = None):
        self.send_timeout = send_timeout if send_timeout is not None else settings.send_timeout
        # {game_id: {id(ws): ws}}
        self._games: Dict[str, Dict[int, WebSocket]] = {}
        # {id(ws): (game_id, player_id)}
        self._owners: Dict[int, Tuple[str, str]] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    def register(self, ws: WebSocket, game_id: str, player_id: str) -> None:
        key = id(ws)
        previous = self._owners.get(key)
        if previous and previous[0] != game_id:
            self._drop(ws, previous[0])
        self._owners[key] = (game_id, player_id)
        self._games.setdefault(game_id, {})[key] = ws
        logger.debug(f"[{game_id}] {player_id} connected ({self.count(game_id)} total)")

    def unregister(self, ws: WebSocket) -> Optional[Tuple[str, str]]:
        """Forget the connection. Returns the (game_id, player_id) it was bound to."""
        owner = self._owners.pop(id(ws), None)
        if owner:
            self._drop(ws, owner[0])
        return owner

    def _drop(self, ws: WebSocket, game_id: str) -> None:
        game_conns = self._games.get(game_id, {})
        game_conns.pop(id(ws), None)
        if not game_conns:
            self._games.pop(game_id, None)

    def owner(self, ws: WebSocket) -> Optional[Tuple[str, str]]:
        return self._owners.get(id(ws))

    def count(self, game_id: str) -> int:
        return len(self._games.get(game_id, {}))

    def player_connection_count(self, game_id: str, player_id: str) -> int:
        return sum(
            1 for key in self._games.get(game_id, {})
            if self._owners.get(key, (None, None))[1] == player_id
        )

    # ── Sending ────────────────────────────────────────────────────────────────

    async def _send(self, ws: WebSocket, message: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(ws.send_json(message), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("send to slow connection timed out after %.1fs", self.send_timeout)
        except Exception as exc:
            logger.warning(f"send failed: {exc}")
        return False

    async def send_to(self, ws: WebSocket, message: Dict[str, Any]) -> None:
        """Send a private message to a single connection."""
        await self._send(ws, message)

    async def broadcast(self, game_id: str, message: Dict[str, Any]) -> None:
        """Send to every registered connection of the game, independently."""
        targets = list(self._games.get(game_id, {}).values())
        if not targets:
            return
        results = await asyncio.gather(*(self._send(ws, message) for ws in targets))
        for ws, delivered in zip(targets, results):
            if not delivered:
                self._drop(ws, game_id)


# Module-level singleton — the session registry broadcasts through it
manager = ConnectionManager()


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws")
async def websocket_endpoint(
    ws: WebSocket,
    registry: SessionRegistry = Depends(get_session_registry),
):
    await ws.accept()

    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_to(ws, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue
            if not isinstance(data, dict):
                await manager.send_to(ws, {
                    "type": "error",
                    "message": "Expected a JSON object",
                    "code": "PARSE_ERROR",
                })
                continue

            await _handle_message(ws, data, registry)

    except WebSocketDisconnect:
        pass
    finally:
        await _release(ws, registry)


async def _release(ws: WebSocket, registry: SessionRegistry) -> None:
    owner = manager.unregister(ws)
    if not owner:
        return
    game_id, player_id = owner
    session = registry.find(game_id)
    if session:
        try:
            await session.disconnect(player_id)
        except GameError as exc:
            logger.warning("[%s] disconnect of %s failed: %s", game_id, player_id, exc.message)


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(ws: WebSocket, data: Dict[str, Any], registry: SessionRegistry) -> None:
    msg_type = data.get("type", "")
    try:
        await _dispatch_message(ws, msg_type, data, registry)
    except WebSocketDisconnect:
        raise
    except GameError as exc:
        await manager.send_to(ws, {
            "type": "error",
            "message": exc.message,
            "code": exc.code,
        })
    except Exception:
        owner = manager.owner(ws)
        logger.exception("[%s] Unhandled error in _handle_message (type=%s)", owner[0] if owner else "-", msg_type)
        await manager.send_to(ws, {
            "type": "error", "message": "Internal server error", "code": "SERVER_ERROR"
        })


async def _dispatch_message(
    ws: WebSocket,
    msg_type: str,
    data: Dict[str, Any],
    registry: SessionRegistry,
) -> None:
    if msg_type == "ping":
        await manager.send_to(ws, {"type": "pong"})

    elif msg_type == "join":
        await _on_join(ws, data, registry)

    elif msg_type == "sendMessage":
        session, player_id = _bound_session(ws, registry)
        await session.send_message(player_id, str(data.get("content", "")))

    elif msg_type == "vote":
        session, player_id = _bound_session(ws, registry)
        if "targetPlayerId" not in data:
            raise ValidationError("targetPlayerId is required (use \"\" to abstain)")
        target = data.get("targetPlayerId")
        await session.cast_vote(player_id, str(target) if target is not None else "")

    else:
        await manager.send_to(ws, {
            "type": "error",
            "message": f"Unknown message type: '{msg_type}'",
            "code": "UNKNOWN_TYPE",
        })


def _bound_session(ws: WebSocket, registry: SessionRegistry):
    owner = manager.owner(ws)
    if not owner:
        raise GameError("Send a join message first", code="NOT_JOINED")
    game_id, player_id = owner
    return registry.get(game_id), player_id


# ── Handlers ──────────────────────────────────────────────────────────────────

async def _on_join(ws: WebSocket, data: Dict[str, Any], registry: SessionRegistry) -> None:
    game_id = str(data.get("gameId") or "")
    player_id = str(data.get("playerId") or "")
    if not game_id or not player_id:
        raise ValidationError("gameId and playerId are required")

    session = registry.get(game_id)
    player = await registry.store.get_player(player_id)
    if not player or player.game_id != game_id:
        raise NotFoundError("Player not found in this game")

    # Re-joining from the same socket: release the previous binding first
    if manager.owner(ws):
        await _release(ws, registry)

    async def deliver(snapshot: GameSnapshot) -> None:
        manager.register(ws, game_id, player_id)
        await manager.send_to(ws, {"type": "gameState", **snapshot.to_public()})

    await session.connect(player_id, on_connect=deliver)
    logger.info("[%s] %s joined over WebSocket", game_id, player_id)
