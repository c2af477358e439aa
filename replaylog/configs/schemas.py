"""Pydantic-based configuration schema and YAML loader for the uploader."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

DEFAULT_SERVER = "https://dispatch.replay.io"
DEFAULT_VIEW_SERVER = "https://app.replay.io"

# Hard ceiling on recordings uploaded at once
MAX_BATCH_SIZE = 25


class UploaderConfig(BaseModel):
    """Where recordings live, where they go, and how hard to push."""

    directory: Path = Field(default_factory=lambda: Path.home() / ".replay")
    server: str = DEFAULT_SERVER
    view_server: str = DEFAULT_VIEW_SERVER
    api_key: Optional[str] = None
    timeout: float = 30.0
    batch_size: int = Field(20, ge=1)
    max_batch_size: int = Field(MAX_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE)
    sourcemap_concurrency: int = Field(10, ge=1)
    original_source_concurrency: int = Field(5, ge=1)
    max_attempts: int = Field(5, ge=1, description="Attempts for byte transfer")
    retry_base_delay: float = Field(0.1, ge=0.0, description="Backoff base in seconds")

    def effective_batch_size(self, requested: Optional[int] = None) -> int:
        cap = min(self.max_batch_size, MAX_BATCH_SIZE)
        return max(1, min(requested or self.batch_size, cap))


def load_yaml(path: Path) -> dict[str, Any]:
    return yaml.safe_load(path.read_text()) or {}


def load_app_config(path: Path) -> UploaderConfig:
    obj = load_yaml(path)
    return UploaderConfig(**obj)
