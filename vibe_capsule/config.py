"""Filesystem locations and process-wide logging setup."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from .summaries.storage import YamlFileStore

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
STATE_FILENAME = "state.yaml"


def get_data_dir() -> Path:
    env_dir = os.getenv("VIBE_CAPSULE_HOME")
    if env_dir and env_dir.strip():
        return Path(env_dir.strip()).expanduser()
    return Path("~/.vibe-capsule").expanduser()


def get_store_path(data_dir: Optional[Path] = None) -> Path:
    return (data_dir or get_data_dir()) / STATE_FILENAME


def open_store(data_dir: Optional[Path] = None) -> YamlFileStore:
    return YamlFileStore(get_store_path(data_dir))


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once; ``VIBE_CAPSULE_LOG_LEVEL`` is the fallback."""
    name = (level or os.getenv("VIBE_CAPSULE_LOG_LEVEL") or "WARNING").upper()
    logging.basicConfig(level=getattr(logging, name, logging.WARNING), format=LOG_FORMAT)
