import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


async def _sweep_ended_rooms() -> None:
    """Background task: evict ended rooms once they have been readable long enough."""
    from services.session_registry import get_session_registry

    registry = get_session_registry()
    while True:
        await asyncio.sleep(settings.sweep_interval)
        try:
            evicted = await registry.sweep_ended()
            if evicted:
                logger.info("Evicted %d ended room(s)", len(evicted))
        except Exception:
            logger.exception("Room sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from services.session_registry import get_session_registry

    logger.info("AI Imposter backend starting up...")
    sweeper = asyncio.create_task(_sweep_ended_rooms())
    yield
    sweeper.cancel()
    await get_session_registry().close_all()
    logger.info("Backend shutting down.")


app = FastAPI(
    title="AI Imposter",
    version="0.1.0",
    description="Real-time social deduction game: find the AI hiding among the humans",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "ai-imposter", "version": "0.1.0"}


from routers.game_router import router as game_router
from routers.ws_router import router as ws_router

app.include_router(game_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
