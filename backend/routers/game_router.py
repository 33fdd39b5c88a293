"""
Game HTTP endpoints.

Routes:
  POST /api/games                     — Create a room (join code + creator name + AI personality)
  POST /api/games/{room_code}/join    — Player joins the lobby by code
  POST /api/games/{game_id}/start     — Creator starts the game (adds the AI player)
  GET  /api/games/{game_id}           — Room, roster and chat log
  GET  /api/personalities             — AI personalities a room can be created with

The live game loop (chat, votes) runs over the WebSocket hub, not here.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from agents.ai_responder import list_personalities
from models.errors import GameError
from models.game import (
    CreateGameRequest, GameSnapshot, GameState,
    JoinGameRequest, JoinGameResponse, PersonalityInfo, StartGameResponse,
)
from services.session_registry import SessionRegistry, get_session_registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["games"])


def _http_error(exc: GameError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@router.post("/games", response_model=GameState, status_code=201)
async def create_game(
    body: CreateGameRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Create a new room. The creator still joins it like any other player."""
    try:
        session = await registry.create_room(
            body.room_code, body.created_by, body.ai_personality.value,
        )
        snapshot = await session.snapshot()
    except GameError as exc:
        raise _http_error(exc)
    return snapshot.game


@router.post("/games/{room_code}/join", response_model=JoinGameResponse, status_code=200)
async def join_game(
    room_code: str,
    body: JoinGameRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Add a player to the lobby. Rejected once the room is full or has started."""
    try:
        session = registry.get_by_code(room_code)
        game, player = await session.join(body.name)
    except GameError as exc:
        raise _http_error(exc)
    logger.info(f"Player {player.id} ({player.name}) joined game {game.id}")
    return JoinGameResponse(game=game, player=player)


@router.post("/games/{game_id}/start", response_model=StartGameResponse, status_code=200)
async def start_game(
    game_id: str,
    requested_by: str = Query(..., alias="requestedBy", description="Must match the room's createdBy"),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Creator starts the game.
    - Adds the hidden AI player.
    - Opens the discussion phase and its countdown.
    Requires at least 4 players to have joined.
    """
    try:
        session = registry.get(game_id)
        game, players = await session.start(requested_by)
    except GameError as exc:
        raise _http_error(exc)
    return StartGameResponse(game=game, players=players)


@router.get("/games/{game_id}", response_model=GameSnapshot)
async def get_game(
    game_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    try:
        session = registry.get(game_id)
    except GameError as exc:
        raise _http_error(exc)
    return await session.snapshot()


@router.get("/personalities", response_model=List[PersonalityInfo])
async def personalities():
    return list_personalities()
