import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import registry, router
from app.cleaner import start_cleaner
from app.config import CORS_ORIGINS, ENABLE_CLEANER, SESSION_IDLE_MINUTES
from app.core.exceptions import register_exception_handlers
from app.core.metrics import metrics

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("compression_studio")


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if ENABLE_CLEANER:
        scheduler = start_cleaner(registry, metrics, logger, SESSION_IDLE_MINUTES * 60)
        logger.info("event=cleaner_started idle_minutes=%s", SESSION_IDLE_MINUTES)
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        registry.teardown_all()


app = FastAPI(title="Compression Studio API", version="1.0.0", lifespan=lifespan)

origins = [origin.strip() for origin in CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
register_exception_handlers(app)
