# app/core/unit_of_work.py
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import DBAPIError, NotSupportedError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

_UNSUPPORTED_MARKERS = ("transaction", "replica set", "standalone")


def transactions_unsupported(exc: BaseException) -> bool:
    """True when ``exc`` says the deployment cannot run multi-statement transactions."""
    if isinstance(exc, NotSupportedError):
        return True
    message = str(getattr(exc, "orig", None) or exc).lower()
    return any(marker in message for marker in _UNSUPPORTED_MARKERS)


class UnitOfWork:
    """One logical write: a real transaction when the store allows it, sequential commits otherwise.

    Callers write through ``uow.session`` and call ``checkpoint(step)`` after each
    write. In transactional mode a checkpoint only flushes and everything commits
    together on exit. In sequential mode each checkpoint commits at once, so a
    failure after the first checkpoint leaves earlier steps applied; that case is
    logged with ``context`` for manual reconciliation.
    """

    def __init__(
            self,
            session_factory: async_sessionmaker,
            use_transactions: bool = True,
            context: Optional[Dict[str, Any]] = None,
    ):
        self._session_factory = session_factory
        self._use_transactions = use_transactions
        self.context: Dict[str, Any] = dict(context or {})
        self.session: Optional[AsyncSession] = None
        self.transactional = False
        self.committed_steps: List[str] = []

    async def __aenter__(self) -> "UnitOfWork":
        self.session = self._session_factory()
        if not self._use_transactions:
            return self

        try:
            await self._begin()
            self.transactional = True
        except DBAPIError as exc:
            if not transactions_unsupported(exc):
                await self.session.close()
                raise
            logger.warning(
                f"Database transactions not supported, falling back to sequential writes: {exc}"
            )
            await self.session.rollback()
        return self

    async def _begin(self) -> None:
        await self.session.begin()
        # check out the connection now so an unsupported deployment fails here
        await self.session.connection()

    async def checkpoint(self, step: str) -> None:
        if self.transactional:
            await self.session.flush()
            return
        await self.session.commit()
        self.committed_steps.append(step)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                await self.session.commit()
                return False

            await self.session.rollback()
            if not self.transactional and self.committed_steps:
                logger.error(
                    f"Partial settlement, manual reconciliation required: "
                    f"committed={self.committed_steps} context={self.context} error={exc!r}"
                )
            return False
        finally:
            await self.session.close()
