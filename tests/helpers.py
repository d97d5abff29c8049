"""Fixture file access and an in-memory file server for the tests."""

from pathlib import Path

import requests

FIXTURES = Path(__file__).parent / "fixtures"

BASE_URL = "http://localhost:8888/"


def fixture_text(name: str) -> str:
    return (FIXTURES / name).read_text()


class FakeFetcher:
    """Serves registered URLs from memory and records every request."""

    def __init__(self):
        self.files = {}
        self.requests = []

    def add(self, url: str, data) -> None:
        self.files[url] = data.encode("utf-8") if isinstance(data, str) else data

    def add_fixture(self, url: str, name: str) -> None:
        self.add(url, (FIXTURES / name).read_bytes())

    def __call__(self, url: str) -> bytes:
        self.requests.append(url)
        if url not in self.files:
            raise requests.HTTPError(f"404 Client Error: Not Found for url: {url}")
        return self.files[url]
