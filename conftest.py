"""Configure test environment and enforce no-network tests."""

from __future__ import annotations

import socket
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

_ENV_KEYS = (
    "RECORD_REPLAY_DIRECTORY",
    "RECORD_REPLAY_SERVER",
    "REPLAY_SERVER",
    "REPLAY_API_KEY",
    "RECORD_REPLAY_API_KEY",
    "REPLAY_VIEW_SERVER",
    "REPLAY_CONFIG_YAML",
)


@pytest.fixture(autouse=True)
def _isolated_env_and_no_network(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)

    def _no_network(*args, **kwargs):  # noqa: ANN001
        raise RuntimeError("Network access blocked in tests/CI")

    monkeypatch.setattr(socket, "create_connection", _no_network)
