"""Shared fixtures."""

import pytest

from helpers import FakeFetcher


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def renders():
    """List collecting every model passed to the render callback."""
    return []
