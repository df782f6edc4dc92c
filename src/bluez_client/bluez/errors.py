"""Error taxonomy for the BlueZ client.

Remote failures arrive as D-Bus error names (``org.bluez.Error.*``); they are
mapped onto a closed set of local exception classes.  Names outside that set
surface as :class:`UnknownRemoteError` carrying the exact remote string.
"""

import logging

from dbus_next.errors import DBusError

from . import constants as c

logger = logging.getLogger(__name__)


class BluezError(Exception):
    """Base class for every error raised by this package."""


class BusConnectionError(BluezError):
    """The message bus is unreachable or the connection was lost."""


class ServiceUnavailableError(BusConnectionError):
    """BlueZ is not registered on the bus, or the mirror is disconnected."""


class InvalidPathError(BluezError, ValueError):
    """Malformed object path, or a path of the wrong kind for the request."""


class ArgumentError(BluezError, ValueError):
    """A call was rejected locally before any exchange took place."""


class NotFoundError(BluezError, LookupError):
    """The referenced object is not present in the mirror."""

    def __init__(self, path: str, detail: str | None = None):
        msg = f"{path} not found"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.path = path


class BluezTimeoutError(BluezError, TimeoutError):
    """A bounded wait expired."""


class AlreadyRegisteredError(BluezError):
    """A default pairing agent is already registered."""


class RemoteOperationError(BluezError):
    """BlueZ answered a call with an error reply.

    ``code`` is the D-Bus error name exactly as received, ``message`` the
    human-readable text that came with it.
    """

    code: str = ""

    def __init__(self, code: str, message: str = ""):
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message


class FailedError(RemoteOperationError):
    pass


class NotReadyError(RemoteOperationError):
    pass


class InProgressError(RemoteOperationError):
    pass


class NotSupportedError(RemoteOperationError):
    pass


class AuthenticationFailedError(RemoteOperationError):
    pass


class AuthenticationCanceledError(RemoteOperationError):
    pass


class AuthenticationRejectedError(RemoteOperationError):
    pass


class AuthenticationTimeoutError(RemoteOperationError):
    pass


class ConnectionAttemptFailedError(RemoteOperationError):
    pass


class InvalidArgumentsError(RemoteOperationError):
    pass


class AlreadyExistsError(RemoteOperationError):
    pass


class DoesNotExistError(RemoteOperationError):
    pass


class AlreadyConnectedError(RemoteOperationError):
    pass


class NotConnectedError(RemoteOperationError):
    pass


class NotAuthorizedError(RemoteOperationError):
    pass


class NotPermittedError(RemoteOperationError):
    pass


class NotAvailableError(RemoteOperationError):
    pass


class InvalidValueLengthError(RemoteOperationError):
    pass


class InvalidOffsetError(RemoteOperationError):
    pass


class RejectedError(RemoteOperationError):
    pass


class CanceledError(RemoteOperationError):
    pass


class UnknownRemoteError(RemoteOperationError):
    """An error name outside the known BlueZ set."""


REMOTE_ERRORS: dict[str, type[RemoteOperationError]] = {
    c.ERROR_FAILED: FailedError,
    c.ERROR_NOT_READY: NotReadyError,
    c.ERROR_IN_PROGRESS: InProgressError,
    c.ERROR_NOT_SUPPORTED: NotSupportedError,
    c.ERROR_AUTHENTICATION_FAILED: AuthenticationFailedError,
    c.ERROR_AUTHENTICATION_CANCELED: AuthenticationCanceledError,
    c.ERROR_AUTHENTICATION_REJECTED: AuthenticationRejectedError,
    c.ERROR_AUTHENTICATION_TIMEOUT: AuthenticationTimeoutError,
    c.ERROR_CONNECTION_ATTEMPT_FAILED: ConnectionAttemptFailedError,
    c.ERROR_INVALID_ARGUMENTS: InvalidArgumentsError,
    c.ERROR_ALREADY_EXISTS: AlreadyExistsError,
    c.ERROR_DOES_NOT_EXIST: DoesNotExistError,
    c.ERROR_ALREADY_CONNECTED: AlreadyConnectedError,
    c.ERROR_NOT_CONNECTED: NotConnectedError,
    c.ERROR_NOT_AUTHORIZED: NotAuthorizedError,
    c.ERROR_NOT_PERMITTED: NotPermittedError,
    c.ERROR_NOT_AVAILABLE: NotAvailableError,
    c.ERROR_INVALID_VALUE_LENGTH: InvalidValueLengthError,
    c.ERROR_INVALID_OFFSET: InvalidOffsetError,
    c.ERROR_REJECTED: RejectedError,
    c.ERROR_CANCELED: CanceledError,
}


def map_remote_error(name: str, message: str = "", path: str | None = None) -> BluezError:
    """Return the local exception for a D-Bus error reply.

    Bus-level names that mean BlueZ is gone map onto the connection errors;
    ``UnknownObject`` means the object vanished and maps onto NotFound.
    """
    if name in (c.DBUS_ERROR_SERVICE_UNKNOWN, c.DBUS_ERROR_NAME_HAS_NO_OWNER):
        error: BluezError = ServiceUnavailableError(f"{name}: {message}")
    elif name in (c.DBUS_ERROR_NO_REPLY, c.DBUS_ERROR_DISCONNECTED):
        error = BusConnectionError(f"{name}: {message}")
    elif name == c.DBUS_ERROR_UNKNOWN_OBJECT:
        error = NotFoundError(path or "object", message or None)
    else:
        cls = REMOTE_ERRORS.get(name, UnknownRemoteError)
        error = cls(name, message)
    logger.debug("Mapped D-Bus error %s (%s) -> %s", name, message, type(error).__name__)
    return error


def from_dbus_error(exc: DBusError, path: str | None = None) -> BluezError:
    """Map a dbus-next ``DBusError`` onto the local taxonomy."""
    return map_remote_error(exc.type, exc.text or "", path)
