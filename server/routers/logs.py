"""
Request Logs Router - Browse the backend generate calls recorded by BackendClient
"""
from fastapi import APIRouter, HTTPException, Query
from datetime import datetime, timezone
from typing import Optional
import aiosqlite
import json

from models import DATABASE_PATH, RequestLog, RequestLogStats
from utils import generate_id

router = APIRouter()

PREVIEW_CHARS = 200


def _prompt_preview(full_request: dict) -> str:
    """
    Short preview for list views.

    Text prompts end with the newest turn, so their tail is shown; chat
    requests show the last message.
    """
    if not isinstance(full_request, dict):
        return ""
    prompt = full_request.get("prompt")
    if isinstance(prompt, str):
        return prompt[-PREVIEW_CHARS:]
    messages = full_request.get("messages") or []
    if not messages:
        return ""
    content = messages[-1].get("content", "")
    if len(content) > PREVIEW_CHARS:
        return content[:PREVIEW_CHARS] + "..."
    return content


async def log_request(
    request_type: str,
    model: Optional[str],
    full_request: dict,
    full_response: Optional[dict] = None,
    duration_ms: int = 0,
    status: str = "success",
    error_message: Optional[str] = None,
    endpoint: Optional[str] = None,
) -> str:
    """Record one backend generate call. Returns the new log id."""
    log_id = generate_id()
    response_text = (full_response or {}).get("content", "")
    row = {
        "id": log_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_type": request_type,
        "endpoint": endpoint,
        "model": model,
        "prompt_preview": _prompt_preview(full_request),
        "full_request": json.dumps(full_request, ensure_ascii=False) if full_request else None,
        "full_response": json.dumps(full_response, ensure_ascii=False) if full_response else None,
        "response_chars": len(response_text),
        "duration_ms": duration_ms,
        "status": status,
        "error_message": error_message,
    }
    columns = ", ".join(row)
    placeholders = ", ".join(f":{name}" for name in row)

    async with aiosqlite.connect(DATABASE_PATH) as db:
        await db.execute(f"INSERT INTO request_logs ({columns}) VALUES ({placeholders})", row)
        await db.commit()

    return log_id


@router.get("", response_model=list[RequestLog])
async def list_logs(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    request_type: Optional[str] = None,
    status: Optional[str] = None
):
    """List request logs, newest first, optionally filtered by type and status."""
    filters = {"request_type": request_type, "status": status}
    conditions = [f"{column} = ?" for column, value in filters.items() if value]
    params = [value for value in filters.values() if value]

    query = "SELECT * FROM request_logs"
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    query += " ORDER BY timestamp DESC LIMIT ? OFFSET ?"

    async with aiosqlite.connect(DATABASE_PATH) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(query, [*params, limit, offset]) as cursor:
            return [RequestLog(**dict(row)) for row in await cursor.fetchall()]


@router.get("/count")
async def get_log_count():
    async with aiosqlite.connect(DATABASE_PATH) as db:
        async with db.execute("SELECT COUNT(*) FROM request_logs") as cursor:
            row = await cursor.fetchone()
            return {"count": row[0]}


@router.get("/stats", response_model=RequestLogStats)
async def get_log_stats():
    """Request counts per status and the mean duration of successful calls."""
    async with aiosqlite.connect(DATABASE_PATH) as db:
        async with db.execute("SELECT status, COUNT(*) FROM request_logs GROUP BY status") as cursor:
            by_status = {status: count for status, count in await cursor.fetchall()}
        async with db.execute(
            "SELECT AVG(duration_ms) FROM request_logs WHERE status = 'success'"
        ) as cursor:
            (avg_duration,) = await cursor.fetchone()

    return RequestLogStats(
        total=sum(by_status.values()),
        by_status=by_status,
        avg_duration_ms=int(avg_duration or 0),
    )


@router.get("/{log_id}", response_model=RequestLog)
async def get_log(log_id: str):
    async with aiosqlite.connect(DATABASE_PATH) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM request_logs WHERE id = ?", (log_id,)) as cursor:
            row = await cursor.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Log not found")
    return RequestLog(**dict(row))


@router.delete("")
async def clear_logs():
    async with aiosqlite.connect(DATABASE_PATH) as db:
        await db.execute("DELETE FROM request_logs")
        await db.commit()
    return {"status": "cleared"}
