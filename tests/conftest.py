"""Pytest configuration shared by all test modules."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in sys.path so `chainlab` and `tests.fakes` import
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture
def anyio_backend() -> str:
    # The orchestrator is built on asyncio primitives.
    return "asyncio"
