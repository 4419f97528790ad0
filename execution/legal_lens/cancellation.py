"""
Per-document generation tokens.

Background work (analysis, embedding) cannot be interrupted while it waits
on an external service. Instead, each processing run captures the document's
current token, and every write it makes goes through ``write_guard``. Starting
a new run or deleting the document advances the token; ``advance`` waits for
in-flight guarded writes of the old token to finish, after which any late
write from superseded work is rejected with ``StaleGeneration``.
"""

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Optional

from .errors import StaleGeneration

logger = logging.getLogger(__name__)


class GenerationRegistry:
    """Tracks the current generation token of every document."""

    def __init__(self):
        self._cond = threading.Condition()
        self._tokens: dict[str, int] = {}
        self._active: dict[tuple[str, int], int] = defaultdict(int)

    def current(self, document_id: str) -> int:
        with self._cond:
            return self._tokens.get(document_id, 0)

    def is_current(self, document_id: str, token: int) -> bool:
        return self.current(document_id) == token

    def check(self, document_id: str, token: int) -> None:
        """Raise ``StaleGeneration`` if ``token`` has been superseded."""
        current = self.current(document_id)
        if current != token:
            raise StaleGeneration(document_id, token, current)

    def advance(self, document_id: str, timeout: Optional[float] = None) -> int:
        """
        Supersede all outstanding work for a document.

        Blocks until writes already inside ``write_guard`` for the previous
        token have completed.

        Returns:
            The new token
        """
        with self.superseding(document_id, timeout) as token:
            return token

    @contextmanager
    def superseding(self, document_id: str, timeout: Optional[float] = None):
        """
        Advance the token and hold the registry while the block runs.

        No other run can advance or enter ``write_guard`` for any document
        until the block exits, so a state change made inside it is seen by
        every run that starts afterwards.

        Usage:
            with registry.superseding(doc_id) as token:
                mark_document_deleting(doc_id)
        """
        with self._cond:
            previous = self._tokens.get(document_id, 0)
            token = previous + 1
            self._tokens[document_id] = token
            drained = self._cond.wait_for(
                lambda: self._active.get((document_id, previous), 0) == 0,
                timeout=timeout,
            )
            if not drained:
                logger.warning(f"Timed out waiting for in-flight writes of document {document_id}")
            logger.debug(f"Document {document_id} advanced to generation {token}")
            yield token

    @contextmanager
    def write_guard(self, document_id: str, token: int):
        """
        Context manager admitting a write only if ``token`` is current.

        Usage:
            with registry.write_guard(doc_id, token):
                store.upsert(...)
        """
        key = (document_id, token)
        with self._cond:
            current = self._tokens.get(document_id, 0)
            if current != token:
                raise StaleGeneration(document_id, token, current)
            self._active[key] += 1
        try:
            yield
        finally:
            with self._cond:
                self._active[key] -= 1
                if self._active[key] <= 0:
                    del self._active[key]
                    self._cond.notify_all()
