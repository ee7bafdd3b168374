"""Exceptions raised by the auth database layer."""


class AuthDbError(Exception):
    """Base class for every error raised by authdb."""


class ConfigError(AuthDbError):
    pass


class DatabaseNotInitializedError(AuthDbError):
    """The database handle was requested before connect() or after close()."""

    def __init__(self, message="Database not initialized"):
        super().__init__(message)


# --- MIGRATIONS ---

class MigrationError(AuthDbError):
    """A single migration unit failed.

    The driver error is kept on ``cause`` (and chained as ``__cause__``)
    so callers can report it verbatim.
    """

    def __init__(self, name, direction, cause):
        self.name = name
        self.direction = direction
        self.cause = cause
        super().__init__(f'Migration "{name}" failed ({direction}): {cause}')


class InvalidMigrationError(AuthDbError):
    pass


class MigrationStateError(AuthDbError):
    """Recorded migration state does not match the migration files."""


class MigrationUsageError(AuthDbError):
    pass
