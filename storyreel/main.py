import os
import time
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from . import metrics
from .pipeline import router as pipeline_router
from .pipeline.routes import close_orchestrator

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Worker starting up...")
    metrics.set_gauge("start_time", time.time())
    yield
    logger.info("Worker shutting down...")
    await close_orchestrator()


app = FastAPI(lifespan=lifespan)
app.include_router(pipeline_router)


@app.get("/health")
def health_check():
    """Verify worker is running and env vars are configured."""
    gemini_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
    sb_url = os.environ.get("SUPABASE_URL") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL", "")
    return {
        "status": "ok",
        "gemini_api_key_set": bool(gemini_key),
        "supabase_url_set": bool(sb_url),
        "r2_configured": bool(os.environ.get("R2_ACCOUNT_ID") and os.environ.get("R2_PUBLIC_URL")),
    }


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all worker metrics."""
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("storyreel.main:app", host="0.0.0.0", port=port, reload=True)
