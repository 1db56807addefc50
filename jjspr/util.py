import concurrent.futures
import logging
import threading
from concurrent.futures import Future
from typing import Callable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


def ensure(value: Optional[T]) -> T:
    """Ensure a value is not None, raising RuntimeError if it is.

    Args:
        value: The value to check

    Returns:
        The value if it is not None

    Raises:
        RuntimeError: If the value is None
    """
    if value is None:
        raise RuntimeError("Value is None")
    return value


def run_concurrently(func: Callable[[T], R], items: Sequence[T], concurrency: int,
                     cancel: Optional[threading.Event] = None) -> List[R]:
    """Run func over items on a bounded thread pool and join every task.

    Results come back in the order of items. After all tasks have finished,
    the first exception (in item order) is re-raised. An interrupt while
    waiting sets cancel, drops tasks that have not started and lets running
    ones finish before propagating.
    """
    if not items:
        return []
    if cancel is None:
        cancel = threading.Event()

    def guarded(item: T) -> R:
        if cancel.is_set():
            raise concurrent.futures.CancelledError()
        return func(item)

    executor = concurrent.futures.ThreadPoolExecutor(max_workers=max(1, concurrency))
    try:
        futures: Sequence[Future[R]] = [executor.submit(guarded, item) for item in items]
        concurrent.futures.wait(futures)
    except KeyboardInterrupt:
        logger.warning("Interrupted, cancelling remaining work")
        cancel.set()
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    executor.shutdown(wait=True)

    results: List[R] = []
    for future in futures:
        # Raises the task's exception, if any
        results.append(future.result())
    return results
