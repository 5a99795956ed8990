"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio
from helpers import SSEServer


@pytest_asyncio.fixture
async def server() -> AsyncIterator[SSEServer]:
    """Scripted SSE endpoint, closed with every connection it opened."""
    srv = SSEServer()
    yield srv
    await srv.aclose()


@pytest.fixture
def collected() -> list[Any]:
    """Sink list for listener callbacks."""
    return []
