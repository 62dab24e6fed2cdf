"""Domain exceptions raised by the gamification engine.

The HTTP layer maps each class to a status code in
``habitquest.middleware.error_handler``.
"""

from __future__ import annotations


class GamificationError(Exception):
    """Base class for every error the engine raises on purpose."""

    status_code = 400
    code = "gamification_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GamificationError):
    """Caller input is invalid for the requested operation."""

    status_code = 400
    code = "validation_error"


class NotFoundError(GamificationError):
    """A referenced user, habit, badge or challenge does not exist."""

    status_code = 404
    code = "not_found"


class PersistenceError(GamificationError):
    """A storage failure aborted a critical write."""

    status_code = 503
    code = "persistence_error"


class ConsistencyError(GamificationError):
    """Stored data violates an invariant the engine relies on."""

    status_code = 500
    code = "consistency_error"
