"""
PocketTavern - streaming chat gateway for SillyTavern-compatible backends
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings
from models import init_db
from utils import logger

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info("PocketTavern %s listening on port %s, backend %s", VERSION, settings.port, settings.backend_url)
    yield
    from routers.chat import shutdown_sessions
    await shutdown_sessions()
    logger.info("PocketTavern stopped")


app = FastAPI(
    title="PocketTavern",
    description="Prompt building, streaming and swipe history on top of a SillyTavern-compatible server",
    version=VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from routers import chat, logs

app.include_router(chat.router, prefix="/api/chat", tags=["Chat"])
app.include_router(logs.router, prefix="/api/logs", tags=["Logs"])


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "version": VERSION}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.debug)
