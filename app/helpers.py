"""Small concurrency and error-handling helpers shared by the services."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Iterable, List, Optional

logger = logging.getLogger('gametrack.compare')


def error_message(exc: Exception, fallback: str) -> str:
    """User-facing text for an unexpected exception."""
    return getattr(exc, 'message', None) or str(exc) or fallback


def best_effort(fn: Callable, *args, default: Any = None, **kwargs) -> Any:
    """Call ``fn(*args, **kwargs)``; on any exception log at DEBUG and
    return *default*.

    Used for optional enrichment (trophy level, PS Plus flag, account tier,
    playtime) whose absence must not fail the surrounding operation.
    """
    try:
        return fn(*args, **kwargs)
    except Exception as exc:
        logger.debug("Optional fetch %s failed: %s",
                     getattr(fn, '__name__', repr(fn)), exc)
        return default


class BatchThrottle:
    """Run a function over items in fixed-size concurrent batches.

    Batch N+1 is submitted only after every call of batch N has finished (or
    the batch deadline passed) and ``delay`` seconds have elapsed. There is
    no delay after the final batch.

    Args:
        max_concurrent: Batch size and worker count.
        delay:          Pause between batches, in seconds.
        batch_timeout:  Seconds to wait for one batch; calls still running
                        after that count as failed. ``None`` waits forever.
        sleep:          Injectable sleep function (tests pass a recorder).
    """

    def __init__(self, max_concurrent: int = 5, delay: float = 0.2,
                 batch_timeout: Optional[float] = None,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.delay = delay
        self.batch_timeout = batch_timeout
        self._sleep = sleep

    def map(self, fn: Callable, items: Iterable) -> List[Any]:
        """Apply *fn* to each item and return results in input order.

        A call that raises or misses the batch deadline yields ``None``.
        """
        items = list(items)
        results: List[Any] = [None] * len(items)
        if not items:
            return results

        executor = ThreadPoolExecutor(max_workers=self.max_concurrent,
                                      thread_name_prefix='gametrack_batch')
        timed_out = False
        try:
            for start in range(0, len(items), self.max_concurrent):
                batch = range(start, min(start + self.max_concurrent, len(items)))
                future_map = {executor.submit(fn, items[idx]): idx for idx in batch}
                done, not_done = wait(future_map, timeout=self.batch_timeout)
                for future in done:
                    idx = future_map[future]
                    try:
                        results[idx] = future.result()
                    except Exception as exc:
                        logger.debug("Batch item %r failed: %s", items[idx], exc)
                if not_done:
                    timed_out = True
                    logger.warning("%d batch call(s) exceeded %ss deadline",
                                   len(not_done), self.batch_timeout)
                    for future in not_done:
                        future.cancel()

                if start + self.max_concurrent < len(items) and self.delay:
                    self._sleep(self.delay)
        finally:
            executor.shutdown(wait=not timed_out)
        return results
