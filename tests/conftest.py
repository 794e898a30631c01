# tests/conftest.py
"""Pytest configuration and fixtures"""
import os
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Settings are read at import time: tests run against in-memory storage
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("ROUTING_PROVIDER", "none")
os.environ.setdefault("ADMIN_TOKEN", "k3J9x_Qm2vL8pR4tW7yZ1bN5cF0hD6sG")

from courier_dispatch.core.domain import Coordinate  # noqa: E402
from courier_dispatch.infra.metrics import get_metrics_collector  # noqa: E402


@pytest.fixture(autouse=True)
def clean_metrics():
    """Every test starts from zero counters"""
    get_metrics_collector().reset()
    yield


@pytest.fixture
def admin_token():
    return os.environ["ADMIN_TOKEN"]


@pytest.fixture
def amsterdam():
    """Amsterdam Centraal, used as the default courier home"""
    return Coordinate(52.3791, 4.9003)


@pytest.fixture
def courier_id():
    return "courier_1"
