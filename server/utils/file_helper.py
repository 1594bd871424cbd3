"""
JSON file helpers for the on-disk stores.

Chat files are rewritten on every message operation, so writes go to a
temporary sibling first and are moved into place.
"""
import json
import uuid
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os


async def save_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
        await f.write(json.dumps(data, indent=2, ensure_ascii=False))
    await aiofiles.os.replace(tmp_path, path)


async def load_json(path: Path) -> Any:
    """Parsed file contents, or None if the file does not exist."""
    if not await aiofiles.os.path.exists(path):
        return None
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        return json.loads(await f.read())


async def list_json_files(directory: Path) -> list[tuple[str, dict]]:
    """(file stem, contents) for every JSON object file in a directory, sorted by name."""
    if not directory.exists():
        return []

    items = []
    for file_path in sorted(directory.glob("*.json")):
        data = await load_json(file_path)
        if isinstance(data, dict):
            items.append((file_path.stem, data))
    return items


def generate_id() -> str:
    return uuid.uuid4().hex
