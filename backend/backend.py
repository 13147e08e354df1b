import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env before the fee module reads its settings.
env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(dotenv_path=env_path)

try:
    from backend.fees_module import init_fees_module, router as fees_router
    from backend.fees_module.config import settings
    from backend.fees_module.sweeper import late_fee_sweep_loop
except ImportError:
    from fees_module import init_fees_module, router as fees_router
    from fees_module.config import settings
    from fees_module.sweeper import late_fee_sweep_loop

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing fee module...")
    init_fees_module(app.state)
    logger.info(f"Fee module initialized (codec: {settings.codec}).")

    sweep_task = None
    if settings.sweep_interval_minutes > 0:
        sweep_task = asyncio.create_task(late_fee_sweep_loop(app.state, settings.sweep_interval_minutes))

    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task
    logger.info("Shutting down...")


app = FastAPI(title="School Fees API", lifespan=lifespan)

origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:8000").split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(fees_router)


@app.get("/health")
def health():
    return {"status": "ok"}
