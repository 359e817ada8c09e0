from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from tempchat.config import settings
from tempchat.database import create_tables
from tempchat.logging_config import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    logger.info("%s %s started", settings.APP_NAME, settings.VERSION)
    yield
    logger.info("%s shutting down", settings.APP_NAME)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="TempChat real-time rooms API",
    lifespan=lifespan
)

# Credentialed CORS only for an explicit origin list
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials="*" not in settings.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

from tempchat.api.v1 import auth, rooms, messages, websocket

app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(rooms.router, prefix="/api/v1/rooms", tags=["rooms"])
app.include_router(messages.router, prefix="/api/v1/messages", tags=["messages"])
app.include_router(websocket.router, prefix="/api/v1/ws", tags=["websocket"])

@app.get("/")
async def root():
    return {"message": "TempChat API", "version": settings.VERSION}

@app.get("/health")
async def health():
    return {"status": "ok"}
