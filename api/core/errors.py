"""
Domain errors shared by the feature packages.

Repositories and the sync pipeline raise these; service layers translate them
into `HTTPException` for the API.
"""

from __future__ import annotations


class HolderMirrorError(RuntimeError):
    pass


class ConfigError(HolderMirrorError):
    pass


class ValidationError(HolderMirrorError):
    pass


class NotFoundError(HolderMirrorError):
    pass


class ConflictError(HolderMirrorError):
    pass


# Persistence failures unrelated to the identity key (connection lost,
# constraint violation, statement timeout, ...).
class StorageError(HolderMirrorError):
    pass
