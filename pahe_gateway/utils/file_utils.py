"""Filesystem helpers for the transmux cache."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

SEGMENT_DIRECTIVE = "#EXTINF:"


def ensure_directory(path: str) -> str:
    """Creates a directory (and its parents) if needed."""

    Path(path).mkdir(parents=True, exist_ok=True)
    return path


def file_exists(path: str) -> bool:
    return os.path.isfile(path)


def count_segments(playlist_path: str) -> int:
    """Counts segment entries in a media playlist that may still be growing."""

    try:
        with open(playlist_path, "r", encoding="utf-8", errors="replace") as handle:
            return handle.read().count(SEGMENT_DIRECTIVE)
    except FileNotFoundError:
        return 0
    except OSError as exc:
        logging.debug("Unable to read playlist %s: %s", playlist_path, exc)
        return 0


def resolve_inside(root: str, relative: str) -> Optional[str]:
    """Joins ``relative`` under ``root``, refusing paths that escape it."""

    base = os.path.realpath(root)
    target = os.path.realpath(os.path.join(base, relative.lstrip("/\\")))
    if os.path.commonpath([base, target]) != base:
        return None
    return target
