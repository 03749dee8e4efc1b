"""Pytest configuration for root-level integration tests.

Adds the expense engine's src directory and the services root to sys.path so
the flat service modules and the shared package import the same way the
service tests see them.
"""

import sys
from pathlib import Path

SERVICES_ROOT = Path(__file__).resolve().parents[1] / "services"

SERVICE_PATHS = [
    SERVICES_ROOT / "expense-engine" / "src",
    SERVICES_ROOT,
]

for path in SERVICE_PATHS:
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)
