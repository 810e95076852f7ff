"""Repository-level domain errors."""

import uuid


class RepositoryError(Exception):
    """Base repository exception."""


class UnknownUserError(RepositoryError):
    """Raised when an operation targets a user that does not exist."""

    def __init__(self, user_ref: uuid.UUID | str) -> None:
        super().__init__(f"unknown user: {user_ref}")
        self.user_ref = user_ref
