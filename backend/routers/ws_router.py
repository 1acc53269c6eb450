"""
WebSocket Hub — real-time delivery of game events and in-socket actions.

URL: /ws/{game_id}?playerId={player_id}

Connection flow:
  1. Validate game + player exist (close 4404 / 4403 otherwise)
  2. Send private "connected" message with the public game snapshot
  3. Message loop (_handle_message dispatcher)
  4. On disconnect: unregister

Client → server message types:
  ping    — keep-alive heartbeat → responds with "pong"
  status  — fresh public snapshot
  action  — {"action": "kill", "target_ids": [...]} → "action_result"

Server → client: every committed GameEvent as {"type": "event", "data": ...}.
Events with recipients go only to those players, other visible events are
broadcast, hidden events without recipients stay in the audit log.
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from models.game import ActionType, GameEvent, GameState, Phase
from services.notifier import Notifier

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


# ── Connection Manager ─────────────────────────────────────────────────────────

class ConnectionManager:
    """
    Open sockets per game, keyed by player id. A reconnecting player replaces
    the previous socket; a socket that fails a send is dropped.
    """

    def __init__(self):
        self._sockets: Dict[str, Dict[str, WebSocket]] = {}

    async def connect(self, game_id: str, player_id: str, ws: WebSocket) -> None:
        await ws.accept()
        sockets = self._sockets.setdefault(game_id, {})
        if player_id in sockets:
            logger.info(f"[{game_id}] {player_id} reconnected, previous socket replaced")
        sockets[player_id] = ws
        logger.debug(f"[{game_id}] {player_id} connected ({len(sockets)} open)")

    def disconnect(self, game_id: str, player_id: str, ws: Optional[WebSocket] = None) -> None:
        """Forget a player's socket. With `ws`, only if it is still the current one."""
        sockets = self._sockets.get(game_id)
        if not sockets:
            return
        if ws is None or sockets.get(player_id) is ws:
            sockets.pop(player_id, None)
        if not sockets:
            del self._sockets[game_id]

    def players(self, game_id: str) -> List[str]:
        return list(self._sockets.get(game_id, {}))

    async def deliver(
        self, game_id: str, message: Dict[str, Any], recipients: Optional[Iterable[str]] = None
    ) -> int:
        """Send to `recipients`, or to every open socket of the game. Returns the sends that succeeded."""
        targets = self.players(game_id) if recipients is None else list(recipients)
        delivered = 0
        for player_id in targets:
            ws = self._sockets.get(game_id, {}).get(player_id)
            if ws is None:
                continue
            try:
                await ws.send_json(message)
                delivered += 1
            except Exception as exc:
                logger.warning(f"[{game_id}] Dropping socket of {player_id}: {exc}")
                self.disconnect(game_id, player_id, ws)
        return delivered

    async def reply(self, game_id: str, player_id: str, message: Dict[str, Any]) -> None:
        await self.deliver(game_id, message, [player_id])


manager = ConnectionManager()


class WebSocketNotifier(Notifier):
    """Routes committed GameEvents to the open sockets."""

    def __init__(self, connections: ConnectionManager):
        self.connections = connections

    async def publish(self, game_id: str, event: GameEvent) -> None:
        message = {"type": "event", "data": event.model_dump(mode="json")}
        if event.recipients:
            await self.connections.deliver(game_id, message, event.recipients)
        elif event.visible_in_game:
            await self.connections.deliver(game_id, message)


def public_state(game: GameState) -> Dict[str, Any]:
    """Snapshot safe to show everyone — roles only once the game is over."""
    ended = game.phase == Phase.ENDED
    players = []
    for p in game.players:
        entry = p.to_public()
        if ended:
            entry["role"] = p.role.value if p.role else None
        players.append(entry)
    return {
        "gameId": game.game_id,
        "hostId": game.host_id,
        "started": game.started,
        "phase": game.phase.value,
        "subPhase": game.sub_phase.value if game.sub_phase else None,
        "dayCount": game.day_count,
        "players": players,
        "captainId": game.captain_id,
        "hunterMustShoot": game.hunter_must_shoot,
        "winner": game.winner.value if game.winner else None,
    }


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws/{game_id}")
async def websocket_endpoint(
    ws: WebSocket,
    game_id: str,
    playerId: str = Query(..., description="Player id used to join the game"),
):
    coordinator = ws.app.state.coordinator

    game = coordinator.get_game(game_id)
    if not game:
        await ws.close(code=4404, reason="Game not found")
        return
    if not game.get_player(playerId):
        await ws.close(code=4403, reason="Player not found in this game")
        return

    await manager.connect(game_id, playerId, ws)
    await manager.reply(game_id, playerId, {
        "type": "connected",
        "playerId": playerId,
        "gameState": public_state(game),
    })

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.reply(game_id, playerId, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue

            msg_type = data.get("type", "")
            # Frontend sends { type, data: { ... } }; unwrap inner payload for handlers
            inner_data = data.get("data") if isinstance(data.get("data"), dict) else {}
            await _handle_message(coordinator, game_id, playerId, msg_type, inner_data)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(game_id, playerId, ws)


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(coordinator, game_id: str, player_id: str, msg_type: str, data: Dict) -> None:
    try:
        await _dispatch_message(coordinator, game_id, player_id, msg_type, data)
    except WebSocketDisconnect:
        raise
    except Exception:
        logger.exception("[%s] Unhandled error in _handle_message (type=%s)", game_id, msg_type)
        await manager.reply(game_id, player_id, {
            "type": "error", "message": "Internal server error", "code": "SERVER_ERROR"
        })


async def _dispatch_message(coordinator, game_id: str, player_id: str, msg_type: str, data: Dict) -> None:
    if msg_type == "ping":
        await manager.reply(game_id, player_id, {"type": "pong"})

    elif msg_type == "status":
        game = coordinator.get_game(game_id)
        if game is None:
            await manager.reply(game_id, player_id, {
                "type": "error", "message": "Game not found", "code": "GAME_NOT_FOUND",
            })
            return
        await manager.reply(game_id, player_id, {"type": "status", "gameState": public_state(game)})

    elif msg_type == "action":
        await _on_action(coordinator, game_id, player_id, data)

    else:
        await manager.reply(game_id, player_id, {
            "type": "error",
            "message": f"Unknown message type: '{msg_type}'",
            "code": "UNKNOWN_TYPE",
        })


async def _on_action(coordinator, game_id: str, player_id: str, data: Dict) -> None:
    try:
        action = ActionType(data.get("action", ""))
    except ValueError:
        await manager.reply(game_id, player_id, {
            "type": "error",
            "message": f"Unknown action: '{data.get('action')}'",
            "code": "UNKNOWN_ACTION",
        })
        return

    target_ids: List[str] = [str(t) for t in data.get("target_ids") or []]
    outcome = await coordinator.execute(action, game_id, player_id, target_ids)
    await manager.reply(game_id, player_id, {
        "type": "action_result",
        "data": outcome.model_dump(mode="json", exclude={"events"}),
    })
