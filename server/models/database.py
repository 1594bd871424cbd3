"""
Request log storage (aiosqlite).

Every generate call made to the backend is recorded here, including stopped
and failed ones, so slow or broken backends can be diagnosed after the fact.
"""
import aiosqlite
from typing import Optional
from pydantic import BaseModel

from config import settings


DATABASE_PATH = settings.data_dir / "pockettavern.db"

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS request_logs (
        id TEXT PRIMARY KEY,
        timestamp TEXT NOT NULL,
        request_type TEXT NOT NULL,
        endpoint TEXT,
        model TEXT,
        prompt_preview TEXT,
        full_request TEXT,
        full_response TEXT,
        response_chars INTEGER DEFAULT 0,
        duration_ms INTEGER DEFAULT 0,
        status TEXT DEFAULT 'success',
        error_message TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_request_logs_timestamp ON request_logs (timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_request_logs_status ON request_logs (status)",
]


async def init_db():
    """Create the request log table and its indexes."""
    async with aiosqlite.connect(DATABASE_PATH) as db:
        for statement in SCHEMA:
            await db.execute(statement)
        await db.commit()


class RequestLog(BaseModel):
    id: str
    timestamp: str
    request_type: str  # instruct, chat
    endpoint: Optional[str] = None
    model: Optional[str] = None
    prompt_preview: Optional[str] = None
    full_request: Optional[str] = None  # JSON string
    full_response: Optional[str] = None  # JSON string
    response_chars: int = 0
    duration_ms: int = 0
    status: str = "success"  # success, error, cancelled
    error_message: Optional[str] = None


class RequestLogStats(BaseModel):
    total: int = 0
    by_status: dict[str, int] = {}
    avg_duration_ms: int = 0  # Successful requests only
