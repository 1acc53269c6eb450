"""
Game HTTP endpoints — the command front-end binding.

Routes:
  POST   /api/games                          — Create game + register host as first player
  POST   /api/games/{game_id}/join           — Player joins the lobby
  GET    /api/games/{game_id}                — Public game state (roles hidden until the end)
  POST   /api/games/{game_id}/start          — Host starts game (role assignment, first night)
  POST   /api/games/{game_id}/actions        — Any player action → ActionOutcome
  DELETE /api/games/{game_id}                — Host terminates the game
  POST   /api/admin/games/{game_id}/reset    — Forced reset (X-Admin-Token)
  GET    /api/games/{game_id}/events         — Event log (visible only, or all post-game)
  GET    /api/games/{game_id}/night-actions  — Night action ledger, post-game only
"""
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from models.errors import GameError, ReasonCode
from models.game import (
    ActionOutcome, ActionRequest, CreateGameRequest, CreateGameResponse, GameEvent,
    GameState, JoinGameRequest, Phase, StartGameRequest,
)
from agents.coordinator import GameCoordinator
from routers.ws_router import public_state
from config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["games"])

# Lobby rejections that are not plain 409 conflicts
_LOBBY_STATUS: Dict[ReasonCode, int] = {
    ReasonCode.GAME_NOT_FOUND: 404,
    ReasonCode.NOT_HOST: 403,
    ReasonCode.NOT_ENOUGH_PLAYERS: 400,
    ReasonCode.INVALID_ROLES: 400,
}


def get_coordinator(request: Request) -> GameCoordinator:
    return request.app.state.coordinator


def require_game_space(
    game_id: str, coordinator: GameCoordinator = Depends(get_coordinator)
) -> GameState:
    """Actions are only reachable for a game this process is running."""
    game = coordinator.get_game(game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    return game


def _raise_for_lobby(outcome: ActionOutcome) -> None:
    if outcome.ok:
        return
    status_code = _LOBBY_STATUS.get(outcome.reason, 409)
    raise HTTPException(status_code=status_code, detail={
        "code": outcome.reason.value if outcome.reason else None,
        "message": outcome.message,
    })


def _internal_error(game_id: str, exc: GameError) -> HTTPException:
    logger.error(f"[{game_id}] Internal failure: {exc}")
    return HTTPException(status_code=500, detail="Internal server error")


def _visible_to(event: GameEvent, player_id: str) -> bool:
    if event.recipients:
        return player_id in event.recipients
    return event.visible_in_game


@router.post("/games", response_model=CreateGameResponse, status_code=201)
async def create_game(body: CreateGameRequest, coordinator: GameCoordinator = Depends(get_coordinator)):
    """Create a new game keyed by the front-end's channel id; the host joins it."""
    try:
        game = await coordinator.create_game(body.game_id, body.host_id, body.host_name)
    except GameError as exc:
        if getattr(exc, "reason", None) == ReasonCode.GAME_EXISTS:
            raise HTTPException(status_code=409, detail="A game already exists for this channel")
        raise _internal_error(body.game_id, exc)
    return CreateGameResponse(game_id=game.game_id, host_id=game.host_id)


@router.post("/games/{game_id}/join", status_code=200)
async def join_game(game_id: str, body: JoinGameRequest, coordinator: GameCoordinator = Depends(get_coordinator)):
    """Add a player to the lobby. Rejected once the game has started."""
    try:
        outcome = await coordinator.join(game_id, body.player_id, body.username)
    except GameError as exc:
        raise _internal_error(game_id, exc)
    _raise_for_lobby(outcome)
    logger.info(f"[{game_id}] Player {body.player_id} ({body.username}) joined")
    return {"game_id": game_id, "player_id": body.player_id}


@router.get("/games/{game_id}")
async def get_game(game: GameState = Depends(require_game_space)):
    """
    Public game state.
    Player roles are NOT included while the game runs; those are delivered
    privately as role_assigned events.
    """
    return public_state(game)


@router.post("/games/{game_id}/start", status_code=200)
async def start_game(game_id: str, body: StartGameRequest, coordinator: GameCoordinator = Depends(get_coordinator)):
    """Host starts the game: roles are dealt and the first night opens."""
    try:
        outcome = await coordinator.start(game_id, body.host_id, body.roles)
    except GameError as exc:
        raise _internal_error(game_id, exc)
    _raise_for_lobby(outcome)
    game = coordinator.get_game(game_id)
    return {"status": "started", "game": public_state(game) if game else None}


@router.post("/games/{game_id}/actions", response_model=ActionOutcome)
async def submit_action(
    game_id: str,
    body: ActionRequest,
    game: GameState = Depends(require_game_space),
    coordinator: GameCoordinator = Depends(get_coordinator),
):
    """
    Run one action. Rejections and duplicates are regular outcomes (HTTP 200),
    only an internal failure is a 500. The returned events are filtered to what
    the actor is allowed to see.
    """
    try:
        outcome = await coordinator.execute(body.action, game_id, body.actor_id, body.target_ids)
    except GameError as exc:
        raise _internal_error(game_id, exc)
    outcome.events = [e for e in outcome.events if _visible_to(e, body.actor_id)]
    return outcome


@router.delete("/games/{game_id}", status_code=200)
async def terminate_game(
    game_id: str,
    requested_by: str = Query(..., description="Must match the game's host_id"),
    coordinator: GameCoordinator = Depends(get_coordinator),
):
    try:
        outcome = await coordinator.terminate(game_id, requested_by)
    except GameError as exc:
        raise _internal_error(game_id, exc)
    _raise_for_lobby(outcome)
    return {"status": "terminated", "game_id": game_id}


@router.post("/admin/games/{game_id}/reset", status_code=200)
async def force_reset(
    game_id: str,
    x_admin_token: Optional[str] = Header(None),
    coordinator: GameCoordinator = Depends(get_coordinator),
):
    """Delete a game from memory and storage regardless of its state."""
    if not settings.admin_token or x_admin_token != settings.admin_token:
        raise HTTPException(status_code=403, detail="Admin token required")
    try:
        await coordinator.force_reset(game_id)
    except GameError as exc:
        raise _internal_error(game_id, exc)
    logger.warning(f"[{game_id}] Forced reset by admin")
    return {"status": "reset", "game_id": game_id}


@router.get("/games/{game_id}/events")
async def get_events(
    game_id: str,
    visible_only: bool = Query(
        True, description="True = public events only; False = full log (post-game reveal)"
    ),
    coordinator: GameCoordinator = Depends(get_coordinator),
):
    """
    Game event log.
    During play: only public events. After the game ends: visible_only=false
    for the full hidden-action reveal.
    """
    game = await _load_game(game_id, coordinator)
    if not visible_only and game.phase != Phase.ENDED:
        raise HTTPException(
            status_code=403,
            detail="Full event log is only available after the game has ended.",
        )
    events = await coordinator.store.get_events(game_id, visible_only=visible_only)
    if visible_only:
        events = [e for e in events if not e.recipients]
    return {
        "game_id": game_id,
        "events": [e.model_dump(mode="json") for e in events],
    }


@router.get("/games/{game_id}/night-actions")
async def get_night_actions(
    game_id: str,
    round: Optional[int] = Query(None, description="Night number (day_count), all nights if omitted"),
    coordinator: GameCoordinator = Depends(get_coordinator),
):
    """Night action ledger for the post-game review."""
    game = await _load_game(game_id, coordinator)
    if game.phase != Phase.ENDED:
        raise HTTPException(status_code=403, detail="Night actions are revealed after the game")
    entries = await coordinator.ledger.entries(game_id, round)
    return {
        "game_id": game_id,
        "night_actions": [e.model_dump(mode="json") for e in entries],
    }


async def _load_game(game_id: str, coordinator: GameCoordinator) -> GameState:
    """Running game from memory, finished games from the store."""
    game = coordinator.get_game(game_id) or await coordinator.store.get_game(game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    return game
