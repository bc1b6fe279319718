from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AppError
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BaseService(ABC):
    """Base class for services that own a database session.

    ``execute`` is the entry point used by the HTTP layer: it validates the
    arguments, delegates to ``run`` and wraps unexpected exceptions in
    ``AppError`` so endpoints only ever see the application hierarchy.
    """

    def __init__(self, session: Optional[AsyncSession] = None):
        """Args:
            session: Session shared by the service's repositories
        """
        self.session = session
        self.logger = LOGGER

    @property
    def name(self) -> str:
        return self.__class__.__name__

    async def execute(self, *args, **kwargs) -> Any:
        """Validate, run and normalize errors.

        Raises:
            AppError: Subclasses pass through unchanged; anything else is wrapped
        """
        self.validate(*args, **kwargs)
        try:
            return await self.run(*args, **kwargs)
        except AppError:
            raise
        except Exception as e:
            self.logger.error(
                f"{self.name} failed: {e}",
                exc_info=True,
                extra={"service": self.name},
            )
            raise AppError(f"{self.name} failed: {e}", original_error=e) from e

    def validate(self, *args, **kwargs) -> None:
        """Reject bad arguments with ValidationError before any I/O."""

    @abstractmethod
    async def run(self, *args, **kwargs) -> Any:
        """Core operation of the service."""
