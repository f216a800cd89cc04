import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Generic, TypeVar

from storage_rental.domain.exceptions import ErrorKind, StorageRentalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"


@dataclass
class ServiceResult(Generic[T]):
    """Outcome of an application service call."""

    ok: bool
    value: T | None = None
    error: ErrorKind | None = None
    message: str | None = None
    created: bool = False

    @classmethod
    def success(cls, value: T | None = None, created: bool = False) -> "ServiceResult[T]":
        return cls(ok=True, value=value, created=created)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "ServiceResult[T]":
        return cls(ok=False, error=error, message=message)


def service_boundary(fn):
    """
    Usage: @service_boundary on a service method whose instance has ``db``.

    Domain errors come back as failures of their own kind; anything else
    is logged and reported as INTERNAL_ERROR. The session is rolled back
    in both cases.
    """

    @wraps(fn)
    def wrapper(self, *args, **kwargs) -> ServiceResult[Any]:
        try:
            return fn(self, *args, **kwargs)
        except StorageRentalError as exc:
            self.db.rollback()
            logger.info("%s failed: %s (%s)", fn.__name__, exc, exc.kind.value)
            return ServiceResult.failure(exc.kind, str(exc))
        except Exception:
            self.db.rollback()
            logger.exception("Unexpected error in %s", fn.__name__)
            return ServiceResult.failure(ErrorKind.INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE)

    return wrapper
