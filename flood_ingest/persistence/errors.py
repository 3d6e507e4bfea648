"""Traducción de excepciones de SQLAlchemy a la taxonomía del servicio."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from ..errors import ConflictError, ReferentialIntegrityError, TransientStoreError

logger = logging.getLogger(__name__)

_FK_MARKERS = ("foreign key", "foreign_key", "fk_", "violates foreign")


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return any(marker in message for marker in _FK_MARKERS)


@contextmanager
def translate_db_errors(operation: str) -> Iterator[None]:
    """Convierte errores de BD en ConflictError / ReferentialIntegrityError / TransientStoreError."""
    try:
        yield
    except IntegrityError as e:
        if _is_foreign_key_violation(e):
            raise ReferentialIntegrityError(f"{operation}: referenced record does not exist") from e
        raise ConflictError(f"{operation}: duplicate key") from e
    except OperationalError as e:
        logger.warning("[DB] %s failed (operational): %s", operation, e)
        raise TransientStoreError(f"{operation}: store unavailable") from e
    except DBAPIError as e:
        logger.warning("[DB] %s failed: %s", operation, e)
        raise TransientStoreError(f"{operation}: {type(e).__name__}") from e
