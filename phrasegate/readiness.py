# Store readiness: a future resolved exactly once by a bounded ping loop.

from __future__ import annotations
import asyncio
import logging
from typing import Optional
from .config import INIT_ATTEMPTS, INIT_RETRY_DELAY, STORE_TIMEOUT
from .errors import InitializationError
from .store import Store

logger = logging.getLogger(__name__)


class StoreReadiness:
    def __init__(self, store: Store, attempts: int = INIT_ATTEMPTS,
                 retry_delay: float = INIT_RETRY_DELAY, timeout: Optional[float] = STORE_TIMEOUT):
        self.store = store
        self.attempts = max(1, attempts)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._future: Optional[asyncio.Future] = None

    def _get_future(self) -> asyncio.Future:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    @property
    def done(self) -> bool:
        return self._future is not None and self._future.done()

    @property
    def ready(self) -> bool:
        return self.done and self._future.exception() is None

    async def initialize(self) -> None:
        """Ping the store until it answers or the attempts run out."""
        fut = self._get_future()
        if fut.done():
            return
        last_error = None
        for attempt in range(1, self.attempts + 1):
            try:
                await asyncio.wait_for(self.store.ping(), self.timeout)
            except Exception as e:
                last_error = e
                logger.warning("Store ping %d/%d failed: %s", attempt, self.attempts, e)
                if attempt < self.attempts:
                    await asyncio.sleep(self.retry_delay)
                continue
            logger.info("Store ready after %d attempt(s)", attempt)
            fut.set_result(None)
            return
        error = InitializationError(self.attempts, str(last_error) or last_error.__class__.__name__)
        logger.error(str(error))
        fut.set_exception(error)

    async def wait(self) -> None:
        """Return once the store is ready, or raise InitializationError."""
        await asyncio.shield(self._get_future())

    def reset(self) -> None:
        """Forget a failed result so initialize() can run again."""
        if self._future is not None and self._future.done() and self._future.exception() is not None:
            self._future = None
