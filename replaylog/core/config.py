"""Runtime configuration loader.

Resolution order for each setting:
1) Environment variable
2) YAML file (explicit path, or ``REPLAY_CONFIG_YAML``)
3) Schema default

Env vars:
- RECORD_REPLAY_DIRECTORY: recordings directory
- RECORD_REPLAY_SERVER, REPLAY_SERVER: service endpoint (first one set wins)
- REPLAY_API_KEY, RECORD_REPLAY_API_KEY: API key
- REPLAY_VIEW_SERVER: devtools URL used when opening recordings
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from replaylog.configs.schemas import UploaderConfig, load_app_config


def _first_env(*keys: str) -> Optional[str]:
    for key in keys:
        val = os.getenv(key)
        if val:
            return val
    return None


def load_runtime(app_path: Optional[Path] = None) -> UploaderConfig:
    if app_path is None:
        env_p = os.getenv("REPLAY_CONFIG_YAML")
        if env_p:
            app_path = Path(env_p)
    if app_path is not None and Path(app_path).exists():
        cfg = load_app_config(Path(app_path))
    else:
        cfg = UploaderConfig()

    overrides: dict[str, object] = {}
    directory = _first_env("RECORD_REPLAY_DIRECTORY")
    if directory:
        overrides["directory"] = Path(directory).expanduser()
    server = _first_env("RECORD_REPLAY_SERVER", "REPLAY_SERVER")
    if server:
        overrides["server"] = server
    api_key = _first_env("REPLAY_API_KEY", "RECORD_REPLAY_API_KEY")
    if api_key:
        overrides["api_key"] = api_key
    view_server = _first_env("REPLAY_VIEW_SERVER")
    if view_server:
        overrides["view_server"] = view_server
    if overrides:
        cfg = cfg.model_copy(update=overrides)
    return cfg
