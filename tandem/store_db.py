"""
tandem.store_db
===============

SQL‑backed implementation of the :class:`tandem.store.PartnershipStore`
surface.

This adapter wraps the CRUD helpers in :pymod:`tandem.db` so that the
lifecycle engine can switch from the in‑memory store to a persistent
one without changing its calls.  Each call opens a short‑lived session.

``atomic()`` only serialises writers inside one process.  Across
processes two guards apply: the active‑partnership unique indexes, and
the ``version`` compare‑and‑swap in :meth:`DBPartnershipStore.save`,
which refuses to overwrite a row that changed since it was read.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from tandem.db import (
    PartnershipDB,
    SessionLocal,
    active_partnerships,
    all_partnerships,
    find_active,
    get_partnership,
    insert_partnership,
    update_partnership,
)
from tandem.errors import ConflictError, InvalidState
from tandem.models import Partnership

logger = logging.getLogger(__name__)

# One lock per process: atomic() blocks from every store instance serialise.
_WRITE_LOCK = threading.RLock()


class DBPartnershipStore:
    """
    Drop‑in replacement for :class:`tandem.store.InMemoryPartnershipStore`.

    Methods mirror the in‑memory store:
    * get(id) / save(p)
    * find_active_by_course_or_project(course_id, project_id, exclude_id)
    * list_active()
    * atomic()
    * iteration / len()
    """

    def __init__(self, bind: Optional[Engine] = None) -> None:
        self._bind = bind

    # ------------------------------------------------------------------ CRUD
    @contextmanager
    def atomic(self) -> Iterator[None]:
        with _WRITE_LOCK:
            yield

    def get(self, partnership_id: str) -> Optional[Partnership]:
        with SessionLocal(self._bind) as s:
            return get_partnership(s, partnership_id)

    def save(self, p: Partnership) -> Partnership:
        """
        Insert *p*, or overwrite the stored row if it is still at
        ``p.version``, and commit.

        Raises
        ------
        InvalidState
            The row was saved by someone else after *p* was read.
        ConflictError
            The active‑course / active‑project unique indexes refused the
            write, i.e. another process approved first.
        """
        with SessionLocal(self._bind) as s:
            try:
                if s.get(PartnershipDB, p.id) is None:
                    insert_partnership(s, p)
                    swapped, bumped = True, False
                else:
                    swapped = update_partnership(s, p)
                    bumped = swapped
                s.commit()
            except IntegrityError as e:
                s.rollback()
                logger.warning(f"Partnership {p.id} rejected by active-partnership index: {e.orig}")
                existing = find_active(s, p.course_id, p.project_id, exclude_id=p.id)
                if existing is not None and existing.project_id == p.project_id and existing.course_id != p.course_id:
                    raise ConflictError("project", p.project_id, existing.id) from e
                raise ConflictError("course", p.course_id, existing.id if existing else None) from e

            if not swapped:
                current = get_partnership(s, p.id)
                logger.warning(f"Partnership {p.id} changed since version {p.version}; save refused")
                raise InvalidState(
                    f"Partnership {p.id} was modified concurrently",
                    current.status.value if current else None,
                )

        if bumped:
            p.version += 1
        return p

    def find_active_by_course_or_project(
        self, course_id: str, project_id: str, exclude_id: Optional[str] = None
    ) -> Optional[Partnership]:
        with SessionLocal(self._bind) as s:
            return find_active(s, course_id, project_id, exclude_id)

    def list_active(self) -> List[Partnership]:
        with SessionLocal(self._bind) as s:
            return active_partnerships(s)

    # ------------------------------------------------------ dunder helpers
    def __iter__(self) -> Iterator[Partnership]:
        with SessionLocal(self._bind) as s:
            rows = all_partnerships(s)
        yield from rows

    def __len__(self) -> int:
        with SessionLocal(self._bind) as s:
            return len(all_partnerships(s))
