"""
Internal helper functions.

These functions are not part of the public API and may change without notice.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def save_json_file(data: dict[str, Any], file_path: Path) -> None:
    """
    Save data as JSON to the specified file path.

    Writes a Python dict to disk as formatted JSON with UTF-8 encoding,
    creating missing parent directories. Non-serializable values are
    converted to strings using the default=str option.

    The data is serialized first and then written to a sibling temporary
    file that replaces the destination, so a failure never leaves a
    truncated or half-written file behind.

    Args:
        data: Dictionary to serialize as JSON.
        file_path: Destination path for the JSON file.

    Raises:
        OSError: If the file cannot be written.
        ValueError: If the data cannot be serialized (e.g. circular references).

    Example:
        >>> save_json_file({"key": "value"}, Path("output/data.json"))
    """
    content = json.dumps(
        data,
        indent=4, ensure_ascii=False, default=str
    )

    file_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = file_path.with_name(f".{file_path.name}.tmp")
    try:
        with tmp_path.open(mode="w", encoding="utf-8") as file:
            file.write(content)
        os.replace(tmp_path, file_path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.debug(f"JSON file written to disk ({file_path}).")


def load_json_file(file_path: Path) -> dict[str, Any]:
    """
    Load a JSON object from the specified file path.

    A missing file reads as an empty dict.

    Args:
        file_path: Path of the JSON file.

    Returns:
        The parsed JSON object.

    Raises:
        OSError: If the file exists but cannot be read.
        ValueError: If the content is not valid JSON or not a JSON object.
    """
    if not file_path.exists():
        return {}

    with file_path.open(mode="r", encoding="utf-8") as file:
        raw = file.read()

    if not raw.strip():
        return {}

    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, found {type(data).__name__}.")
    return data
