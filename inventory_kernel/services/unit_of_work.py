"""
UnitOfWork -- explicit transaction scope for one logical operation.

Responsibility:
    Opens a session from the injected factory, exposes explicit
    ``commit()`` / ``rollback()``, and guarantees a rollback on every exit
    path that did not commit: early return, business-rule exception,
    store failure, or KeyboardInterrupt.

Architecture position:
    Kernel > Services.  Used by the StockLedger (one unit of work per
    movement attempt) and by the CLI for registry operations.

Usage:
    with begin_unit_of_work(session_factory) as uow:
        uow.session.add(thing)
        uow.commit()
    # leaving the block without commit() rolls back
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.logging_config import get_logger

logger = get_logger("services.unit_of_work")


class UnitOfWork:
    """
    Scoped transaction around a fresh session.

    Contract:
        - ``session`` is only valid inside the ``with`` block.
        - ``commit()`` may be called at most once.

    Guarantees:
        - Exiting without ``commit()`` rolls back.
        - The session is always closed on exit.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._session: Session | None = None
        self._committed = False
        self._rolled_back = False

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("UnitOfWork is not active; use it as a context manager")
        return self._session

    @property
    def committed(self) -> bool:
        return self._committed

    def __enter__(self) -> UnitOfWork:
        self._session = self._session_factory()
        self._committed = False
        self._rolled_back = False
        return self

    def commit(self) -> None:
        if self._committed:
            raise RuntimeError("UnitOfWork already committed")
        self.session.commit()
        self._committed = True
        logger.debug("transaction_committed")

    def rollback(self) -> None:
        self.session.rollback()
        self._rolled_back = True

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        session = self._session
        try:
            if session is not None and not self._committed and not self._rolled_back:
                session.rollback()
                if exc_type is not None:
                    logger.debug(
                        "transaction_rolled_back",
                        extra={"exc_type": exc_type.__name__},
                    )
        finally:
            if session is not None:
                session.close()
            self._session = None
        return False


def begin_unit_of_work(session_factory: sessionmaker[Session]) -> UnitOfWork:
    """Create a unit of work; enter it with ``with``."""
    return UnitOfWork(session_factory)
