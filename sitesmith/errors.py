class SitesmithError(Exception):
    """Base class for errors surfaced to users as short messages."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class TransportError(SitesmithError):
    """The generation stream could not be opened or broke mid-way."""

    status_code = 502


class EditError(SitesmithError):
    """A rejected edit operation (empty instruction, nothing applicable, ...)."""

    status_code = 422


class PathError(EditError):
    """An untrusted path escaped the project root or was malformed."""

    status_code = 400


class WorkspaceError(SitesmithError):
    """A remote workspace file operation failed."""


class CheckpointError(SitesmithError):
    status_code = 422


class ConfirmationRequired(SitesmithError):
    """Raised by destructive operations that were not explicitly confirmed.

    The message is the question to put to the user; repeat the call with
    ``confirmed=True`` once they agree.
    """

    status_code = 409
