"""Resource fetching and the queue of deferred load steps.

Loading is single-threaded: work that would wait on the network is queued as
a step on the :class:`LoadingManager` and runs when the host drains the queue
with :meth:`LoadingManager.process_pending`. Completion callbacks therefore
arrive after the call that requested them has returned, one at a time.
"""

import logging

from collections import deque
from typing import Callable, Deque, Optional

import requests

console_logger = logging.getLogger(__name__)

Fetcher = Callable[[str], bytes]


class HttpFetcher:
    """Fetches resources from the hosting file server with HTTP GET.

    The fetcher keeps a persistent session for connection pooling.
    """

    def __init__(self, timeout_s: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def __call__(self, url: str) -> bytes:
        """Return the body of ``url``.

        Raises:
            requests.RequestException: On connection errors, timeouts and
                non-2xx responses.
        """
        console_logger.debug(f"GET {url}")
        response = self.session.get(url, timeout=self.timeout_s)
        response.raise_for_status()
        return response.content


class LoadingManager:
    """Counts outstanding loads and runs queued load steps in FIFO order.

    Callbacks:
        on_progress(url, items_loaded, items_total): after each finished item.
        on_error(url): when an item failed. The item still counts as finished.
        on_load(): when every started item has finished.
    """

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        on_load: Optional[Callable[[], None]] = None,
        on_progress: Optional[Callable[[str, int, int], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self.fetch = fetcher or HttpFetcher()
        self.on_load = on_load
        self.on_progress = on_progress
        self.on_error = on_error
        self.items_loaded = 0
        self.items_total = 0
        self._queue: Deque[Callable[[], None]] = deque()

    @property
    def is_loading(self) -> bool:
        return self.items_loaded < self.items_total

    @property
    def pending_steps(self) -> int:
        return len(self._queue)

    def schedule(self, step: Callable[[], None]) -> None:
        self._queue.append(step)

    def item_start(self, url: str) -> None:
        self.items_total += 1
        console_logger.debug(f"Loading {url} ({self.items_loaded}/{self.items_total})")

    def item_end(self, url: str) -> None:
        self.items_loaded += 1
        if self.on_progress is not None:
            self.on_progress(url, self.items_loaded, self.items_total)
        if self.items_loaded == self.items_total and self.on_load is not None:
            self.on_load()

    def item_error(self, url: str) -> None:
        if self.on_error is not None:
            self.on_error(url)

    def process_pending(self, max_steps: Optional[int] = None) -> int:
        """Run queued steps, including steps queued while draining.

        Args:
            max_steps: Stop after this many steps. Drains the queue if None.

        Returns:
            Number of steps that ran.
        """
        steps = 0
        while self._queue and (max_steps is None or steps < max_steps):
            step = self._queue.popleft()
            step()
            steps += 1
        return steps
