"""
Steward Cancellation Token

Cooperative cancellation shared by the orchestrator and the retry loop.
``cancel()`` may be called from any thread; the flag stays set until
``reset()`` is called explicitly.
"""

from __future__ import annotations

import asyncio
import threading


class CancellationToken:
    """Thread-safe cancellation flag with a cancellable sleep."""

    POLL_INTERVAL = 0.05

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns True if cancelled while sleeping."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while not self.is_cancelled:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(self.POLL_INTERVAL, remaining))
        return True
