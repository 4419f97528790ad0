"""
Guarded calls to external AI services.

Every embedding, generation and classification call goes through
``UpstreamCaller.call`` which:

- runs the call with a bounded timeout (a timeout counts as a failure)
- retries failures with exponential backoff up to ``max_attempts``
- caps concurrent calls per document with a semaphore
- raises ``UpstreamUnavailable`` once retries are exhausted

Validation failures (``UpstreamDegraded``) raised by the wrapped function are
not retried here; callers decide how to recover from bad output.
"""

import time
import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Callable, Optional

from .config import UpstreamPolicy
from .errors import UpstreamDegraded, UpstreamUnavailable

logger = logging.getLogger(__name__)


class UpstreamCaller:
    """
    Timeout, retry and per-document concurrency wrapper.

    Usage:
        caller = UpstreamCaller(UpstreamPolicy(timeout_seconds=10))
        vector = caller.call("embedding", service.embed, text, document_id=doc_id)
    """

    def __init__(
        self,
        policy: Optional[UpstreamPolicy] = None,
        max_calls_per_document: int = 4,
        max_workers: int = 16,
        sleep: Callable[[float], None] = time.sleep,
        metrics=None,
    ):
        self.policy = policy or UpstreamPolicy()
        self._max_calls_per_document = max_calls_per_document
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="legal-lens-upstream"
        )
        self._sleep = sleep
        self._metrics = metrics
        self._slots: dict[str, threading.BoundedSemaphore] = defaultdict(
            lambda: threading.BoundedSemaphore(self._max_calls_per_document)
        )
        self._slots_lock = threading.Lock()

    def _slot(self, document_id: Optional[str]) -> Optional[threading.BoundedSemaphore]:
        if document_id is None:
            return None
        with self._slots_lock:
            return self._slots[document_id]

    def release_document(self, document_id: str) -> None:
        """Forget the per-document semaphore once a document is gone."""
        with self._slots_lock:
            self._slots.pop(document_id, None)

    def call(
        self,
        service: str,
        fn: Callable,
        *args,
        document_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
        **kwargs,
    ):
        """
        Invoke ``fn(*args, **kwargs)`` under the timeout/retry policy.

        Args:
            service: Service name for logs and metrics ("embedding", "generation", ...)
            fn: Callable performing the external call
            document_id: Document the call is made for (enables the per-document cap)
            max_attempts: Override the policy's attempt limit

        Returns:
            Whatever ``fn`` returns.

        Raises:
            UpstreamUnavailable: All attempts failed or timed out
            UpstreamDegraded: ``fn`` rejected the service output
        """
        attempts = max_attempts or self.policy.max_attempts
        last_error = None

        for attempt in range(attempts):
            try:
                return self._attempt(fn, args, kwargs, self._slot(document_id))
            except UpstreamDegraded:
                raise
            except FuturesTimeout:
                last_error = f"timed out after {self.policy.timeout_seconds}s"
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"

            logger.warning(
                f"{service} call failed (attempt {attempt + 1}/{attempts}): {last_error}"
            )
            if attempt < attempts - 1:
                self._sleep(self.policy.backoff(attempt))

        if self._metrics is not None:
            self._metrics.record_upstream_failure(service)
        raise UpstreamUnavailable(service, last_error or "unknown error", attempts=attempts)

    def _attempt(self, fn: Callable, args, kwargs, slot: Optional[threading.BoundedSemaphore]):
        """
        One call under the timeout.

        The document slot stays taken until the call itself finishes, so a
        call that outlives its timeout still counts against the cap.
        """
        if slot is not None:
            slot.acquire()
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except Exception:
            if slot is not None:
                slot.release()
            raise
        if slot is not None:
            future.add_done_callback(lambda _: slot.release())

        try:
            return future.result(timeout=self.policy.timeout_seconds)
        except FuturesTimeout:
            future.cancel()
            raise

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
