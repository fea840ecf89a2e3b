import asyncio
import contextlib
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from game_forge import storage
from game_forge.routes import router
from game_forge.service import GameForgeService, create_service

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


async def _sweep_forever(service: GameForgeService, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        result = service.sweep()
        if result["timed_out"] or result["evicted"]:
            logger.info("sweep: %d timed out, %d evicted",
                        len(result["timed_out"]), len(result["evicted"]))


def create_app(data_dir: Path | None = None, service: GameForgeService | None = None) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage.init_storage(resolved)
    config = storage.resolve_config()
    service = service or create_service(config)
    interval = float(config["sessions"]["sweep_interval"])

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(_sweep_forever(service, interval))
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(title="Game Forge", lifespan=lifespan)
    app.state.service = service
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
