"""Bounded worker pool for external market-data lookups.

Lookups for distinct keys run concurrently on a fixed number of threads.
Identical in-flight requests share one future. Failed calls are retried with
exponential backoff and, once retries are exhausted, resolve to the caller's
fallback value instead of raising.
"""

import logging
import threading
from collections.abc import Callable, Hashable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from tenacity import RetryError, Retrying, stop_after_attempt, wait_exponential

from beatthemarket.config import settings

logger = logging.getLogger(__name__)


class RequestPool:
    """Thread pool with per-key in-flight deduplication and retry.

    Example usage:
        pool = RequestPool(max_workers=10)
        future = pool.submit(("prices", "SPY"), lambda: fetch("SPY"), fallback=[])
        results = pool.gather({"SPY": future}, timeout=30)
    """

    def __init__(
        self,
        max_workers: int | None = None,
        retry_attempts: int | None = None,
        retry_base_delay: float | None = None,
    ):
        self.max_workers = max_workers or settings.market_data_max_workers
        self.retry_attempts = retry_attempts or settings.market_data_retry_attempts
        self.retry_base_delay = (
            retry_base_delay
            if retry_base_delay is not None
            else settings.market_data_retry_base_delay
        )
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="market-data"
        )
        self._in_flight: dict[Hashable, Future] = {}
        self._lock = threading.Lock()

    def submit(self, key: Hashable, fn: Callable[[], Any], fallback: Any = None) -> Future:
        """Schedule a lookup, joining an identical request already in flight.

        Args:
            key: Identity of the request (e.g., ("prices", symbol, start, end))
            fn: Zero-argument callable performing the lookup
            fallback: Value returned when every attempt fails

        Returns:
            Future resolving to the lookup result or the fallback
        """
        with self._lock:
            existing = self._in_flight.get(key)
            if existing is not None:
                logger.debug(f"Joining in-flight request {key}")
                return existing

            future = self._executor.submit(self._run_with_retry, key, fn, fallback)
            self._in_flight[key] = future

        future.add_done_callback(lambda _: self._release(key, future))
        return future

    def gather(self, futures: dict[Hashable, Future], timeout: float | None = None) -> dict:
        """Collect results that complete within the timeout.

        Requests still running when the timeout expires are abandoned and left
        out of the result.
        """
        if not futures:
            return {}
        if timeout is None:
            timeout = settings.market_data_timeout

        done, not_done = wait(list(futures.values()), timeout=timeout)
        if not_done:
            logger.warning(f"Abandoning {len(not_done)} market data requests after {timeout}s")
            for future in not_done:
                future.cancel()

        return {key: future.result() for key, future in futures.items() if future in done}

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _release(self, key: Hashable, future: Future) -> None:
        with self._lock:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

    def _run_with_retry(self, key: Hashable, fn: Callable[[], Any], fallback: Any) -> Any:
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_base_delay, min=self.retry_base_delay),
            before_sleep=lambda state: logger.info(
                f"Retrying {key} after attempt {state.attempt_number}: {state.outcome.exception()}"
            ),
        )
        try:
            return retrying(fn)
        except RetryError as e:
            logger.warning(
                f"Request {key} failed after {self.retry_attempts} attempts, using fallback: "
                f"{e.last_attempt.exception()}"
            )
            return fallback
