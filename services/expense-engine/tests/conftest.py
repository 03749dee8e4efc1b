"""Pytest configuration for expense-engine tests.

Ensures the service's own src directory takes precedence in sys.path and that
the shared package is importable.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

SERVICES_ROOT = Path(__file__).resolve().parents[2]

# Ensure this service's src is first in sys.path
SERVICE_SRC = Path(__file__).resolve().parents[1] / "src"
if str(SERVICE_SRC) not in sys.path:
    sys.path.insert(0, str(SERVICE_SRC))

if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(1, str(SERVICES_ROOT))

# Monday 2026-10-19, mid-afternoon UTC.
FIXED_NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW
