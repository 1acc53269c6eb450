import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

from agents.coordinator import GameCoordinator
from routers.game_router import router as game_router
from routers.ws_router import router as ws_router, manager, WebSocketNotifier
from services.firestore_service import get_game_store
from services.notifier import FanoutNotifier, LoggingNotifier


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Werewolf engine starting up (storage={settings.storage_backend})...")
    coordinator = GameCoordinator(
        get_game_store(),
        notifier=FanoutNotifier(LoggingNotifier(), WebSocketNotifier(manager)),
        gate_timeout=settings.gate_timeout_seconds,
    )
    app.state.coordinator = coordinator
    await coordinator.restore()
    yield
    coordinator.shutdown()
    logger.info("Engine shutting down.")


app = FastAPI(
    title="Werewolf Engine",
    version="0.1.0",
    description="Authoritative night-action resolution engine for multiplayer Werewolf",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Token"],
)


@app.get("/health")
async def health_check():
    coordinator = getattr(app.state, "coordinator", None)
    return {
        "status": "ok",
        "service": "werewolf-engine",
        "version": "0.1.0",
        "games": len(coordinator.registry) if coordinator else 0,
    }


app.include_router(game_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
