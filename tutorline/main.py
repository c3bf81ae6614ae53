"""Main FastAPI application."""
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from tutorline.api import events, health, history, webhooks
from tutorline.core.config import settings
from tutorline.core.dependencies import build_runtime
from tutorline.core.logging import setup_logging
from tutorline.db.database import init_db
from tutorline.middleware.network import NetworkRecordMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        await init_db()
        runtime = build_runtime(settings)
        app.state.runtime = runtime
    await runtime.start()
    yield
    # Shutdown
    await runtime.stop()


app = FastAPI(
    title=settings.app_name,
    description="Phone-based AI tutoring over a keypad menu",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(NetworkRecordMiddleware)

app.include_router(health.router, tags=["health"])
app.include_router(webhooks.voice.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(events.router, tags=["events"])
app.include_router(history.router, tags=["history"])

# Synthesized answers are served to the gateway from here
audio_dir = Path(settings.audio_dir)
audio_dir.mkdir(parents=True, exist_ok=True)
app.mount("/audio", StaticFiles(directory=str(audio_dir)), name="audio")


@app.get("/")
async def root():
    return {
        "message": f"{settings.app_name} API",
        "version": "0.1.0",
    }
