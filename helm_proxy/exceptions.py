"""Exceptions related to helm-proxy."""

__all__ = [
    "HelmProxyException",
    "InputException",
    "CommandException",
    "HelmException",
    "ObjectNotFoundError",
    "ConflictError",
    "ConsistencyError",
    "RemoteError",
    "CredentialsError",
    "ReleaseNotFoundError",
    "ValuesTemplateError",
    "ChildDeletionError",
]


class HelmProxyException(Exception):
    """Generic base exception used for this library."""


class InputException(HelmProxyException):
    """Raised when the input files or values are not formatted as expected."""


class RemoteError(HelmProxyException):
    """Raised when a call to a remote system fails and may be retried."""


class CommandException(RemoteError):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""


class CredentialsError(RemoteError):
    """Raised when connection details for a target cluster can't be obtained."""


class ObjectNotFoundError(HelmProxyException):
    """Raised when an object is not found in the store."""


class ReleaseNotFoundError(HelmProxyException):
    """Raised when a helm release does not exist on the target cluster."""


class ConflictError(HelmProxyException):
    """Raised when a write is based on a stale version or the object already exists."""


class ConsistencyError(HelmProxyException):
    """Raised when stored state is inconsistent and must be repaired by hand."""


class ValuesTemplateError(InputException):
    """Raised when a values template can't be rendered for a cluster."""


class ChildDeletionError(HelmProxyException):
    """Raised when one or more HelmReleaseProxy deletes failed during teardown."""

    def __init__(self, parent_name: str, errors: dict[str, Exception]) -> None:
        details = ", ".join(f"{name}: {err}" for name, err in sorted(errors.items()))
        super().__init__(
            f"Failed to delete {len(errors)} HelmReleaseProxy object(s) "
            f"for {parent_name}: {details}"
        )
        self.parent_name = parent_name
        self.errors = errors
