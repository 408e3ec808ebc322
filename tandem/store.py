"""
tandem.store
============

Repository interface consumed by the lifecycle engine, plus an
in‑memory implementation keyed by partnership id.

The in‑memory store uses only the standard library so that it can be
unit‑tested without external dependencies or a database.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import ContextManager, Dict, Iterator, List, Optional, Protocol

from .errors import InvalidState
from .models import ACTIVE_STATUSES, Partnership


class PartnershipStore(Protocol):
    """
    Persistence contract required by :class:`tandem.lifecycle.PartnershipLifecycle`.

    ``atomic()`` must guarantee that no other ``atomic()`` block touching
    the same course or project interleaves with the caller's
    check‑then‑save sequence.

    ``save()`` is a compare‑and‑swap on :pyattr:`Partnership.version`: it
    raises :class:`~tandem.errors.InvalidState` when the stored record was
    saved again after *p* was read, and bumps the version otherwise.
    """

    def get(self, partnership_id: str) -> Optional[Partnership]:
        ...

    def save(self, p: Partnership) -> Partnership:
        ...

    def find_active_by_course_or_project(
        self, course_id: str, project_id: str, exclude_id: Optional[str] = None
    ) -> Optional[Partnership]:
        ...

    def list_active(self) -> List[Partnership]:
        ...

    def atomic(self) -> ContextManager[None]:
        ...

    def __iter__(self) -> Iterator[Partnership]:
        ...


class InMemoryPartnershipStore:
    """
    Dictionary‑backed store.

    Records are deep‑copied on the way in and out, so callers can mutate
    what :meth:`get` returns without touching stored state until they
    :meth:`save` it.
    """

    def __init__(self) -> None:
        self._rows: Dict[str, Partnership] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Serialise the enclosed block against every other writer."""
        with self._lock:
            yield

    def get(self, partnership_id: str) -> Optional[Partnership]:
        with self._lock:
            row = self._rows.get(partnership_id)
            return copy.deepcopy(row) if row is not None else None

    def save(self, p: Partnership) -> Partnership:
        """Insert a partnership, or overwrite it if nobody saved it since it was read."""
        with self._lock:
            row = self._rows.get(p.id)
            if row is not None:
                if row.version != p.version:
                    raise InvalidState(
                        f"Partnership {p.id} was modified concurrently", row.status.value
                    )
                p.version += 1
            self._rows[p.id] = copy.deepcopy(p)
        return p

    def find_active_by_course_or_project(
        self, course_id: str, project_id: str, exclude_id: Optional[str] = None
    ) -> Optional[Partnership]:
        """Return any other active partnership sharing the course or the project."""
        with self._lock:
            for row in self._rows.values():
                if row.id == exclude_id or row.status not in ACTIVE_STATUSES:
                    continue
                if row.course_id == course_id or row.project_id == project_id:
                    return copy.deepcopy(row)
        return None

    def list_active(self) -> List[Partnership]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._rows.values() if r.status in ACTIVE_STATUSES]

    # ------------------------------------------------------------------
    # Dunder helpers for convenience
    # ------------------------------------------------------------------
    def __iter__(self) -> Iterator[Partnership]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._rows.values()]
        return iter(rows)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
