"""Serialización de transiciones por documento."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

import structlog

logger = structlog.get_logger()


class DocumentLockRegistry:
    """Un lock exclusivo por id de documento.

    Las lecturas no pasan por aquí; solo las operaciones que cambian estado.
    Los locks se liberan del registro cuando nadie los está usando.
    """

    def __init__(self, acquire_timeout: float | None = None) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}
        self._acquire_timeout = acquire_timeout

    @contextmanager
    def hold(self, document_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(document_id, threading.Lock())
            self._users[document_id] = self._users.get(document_id, 0) + 1

        try:
            if self._acquire_timeout is None:
                lock.acquire()
            elif not lock.acquire(timeout=self._acquire_timeout):
                logger.warning("document_lock_timeout", document_id=document_id)
                raise TimeoutError(f"Documento {document_id} ocupado por otra operación")
            try:
                yield
            finally:
                lock.release()
        finally:
            with self._guard:
                self._users[document_id] -= 1
                if self._users[document_id] == 0:
                    del self._users[document_id]
                    del self._locks[document_id]

    def is_locked(self, document_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(document_id)
        return lock is not None and lock.locked()
