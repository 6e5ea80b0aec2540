"""Pacing primitives for batch processing."""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class BatchRateLimiter:
    """Serialize guarded operations and keep a minimum interval between them.

    Used as an async context manager around each batch flush. The interval is
    measured from the end of the previous operation to the start of the next,
    so slow embedding calls are followed by the full pause.
    """

    def __init__(self, interval: float = 0.0):
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self._lock = asyncio.Lock()
        self._last_release: Optional[float] = None

    async def __aenter__(self) -> "BatchRateLimiter":
        await self._lock.acquire()
        if self._last_release is not None and self.interval > 0:
            loop = asyncio.get_running_loop()
            wait = self._last_release + self.interval - loop.time()
            if wait > 0:
                logger.debug(f"Pacing next batch by {wait:.3f}s")
                try:
                    await asyncio.sleep(wait)
                except BaseException:
                    self._lock.release()
                    raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self._last_release = asyncio.get_running_loop().time()
        self._lock.release()
