"""Common plumbing for the typed BlueZ interface proxies.

A proxy is a non-owning handle: it holds a path and an interface name and
resolves state through the mirror on every read.  Writes go straight to
BlueZ via ``org.freedesktop.DBus.Properties.Set`` and are NOT reflected
locally; the new value shows up once BlueZ emits PropertiesChanged.
"""

import asyncio
import logging
from typing import Any

from dbus_next import Variant

from ..events import Subscription
from .errors import ArgumentError, BluezTimeoutError, InvalidPathError, NotFoundError
from .exchange import BusExchange
from .mirror import ObjectManagerMirror
from .paths import ObjectKind, ObjectPath, kind_of
from .properties import PropertyChange

logger = logging.getLogger(__name__)

_MISSING = object()


def validate_bytes(data, what: str = "value") -> bytes:
    """Coerce *data* to bytes, rejecting empty or non-byte input."""
    if isinstance(data, str):
        raise ArgumentError(f"{what} must be bytes, not str")
    try:
        value = bytes(data)
    except (TypeError, ValueError) as e:
        raise ArgumentError(f"{what} must be a byte sequence: {e}") from e
    if not value:
        raise ArgumentError(f"{what} must not be empty")
    return value


def validate_offset(offset: int) -> int:
    if isinstance(offset, bool) or not isinstance(offset, int) or not 0 <= offset <= 0xFFFF:
        raise ArgumentError(f"offset must be an integer in 0..65535, got {offset!r}")
    return offset


class BluezProxy:
    """Typed façade over one BlueZ interface on one object."""

    INTERFACE: str = ""
    KIND: ObjectKind | None = None

    def __init__(self, exchange: BusExchange, mirror: ObjectManagerMirror, path: str):
        path = ObjectPath(path)
        if self.KIND is not None and kind_of(path) is not self.KIND:
            raise InvalidPathError(f"{path} is not a {self.KIND.value} path")
        self._exchange = exchange
        self._mirror = mirror
        self._path = path

    @property
    def path(self) -> ObjectPath:
        return self._path

    @property
    def exists(self) -> bool:
        """True while the object is present in the mirror."""
        return self._mirror.contains(self._path)

    def properties(self) -> dict[str, Any]:
        """Copy of every property of this interface as currently mirrored."""
        return self._mirror.properties(self._path, self.INTERFACE)

    def _prop(self, name: str, default: Any = None) -> Any:
        return self._mirror.get_property(self._path, self.INTERFACE, name, default)

    async def _set(self, name: str, signature: str, value: Any) -> None:
        logger.debug("Set %s.%s=%r on %s", self.INTERFACE, name, value, self._path)
        await self._exchange.set_property(
            self._path, self.INTERFACE, name, Variant(signature, value)
        )

    async def _call(self, member: str, signature: str = "", *args) -> list:
        return await self._exchange.call(
            self._path, self.INTERFACE, member, signature, list(args)
        )

    def watch(self) -> Subscription[PropertyChange]:
        """Stream of property changes on this interface."""
        return self._mirror.watch(self._path, self.INTERFACE)

    async def wait_for_property(
        self, name: str, expected: Any = _MISSING, timeout: float | None = None
    ) -> Any:
        """Wait until *name* equals *expected* (or just changes) and return it.

        This is how a caller observes the authoritative result of one of the
        ``set_*`` writes.
        """
        sub = self.watch()
        try:
            if expected is not _MISSING:
                current = self._prop(name)
                if current == expected:
                    return current

            async def _wait() -> Any:
                async for change in sub:
                    if change.name != name:
                        continue
                    if expected is _MISSING or change.value == expected:
                        return change.value
                raise NotFoundError(self._path, f"removed while waiting for {name}")

            try:
                return await asyncio.wait_for(_wait(), timeout)
            except asyncio.TimeoutError:
                raise BluezTimeoutError(
                    f"{name} on {self._path} did not change within {timeout}s"
                ) from None
        finally:
            sub.close()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BluezProxy):
            return NotImplemented
        return type(self) is type(other) and self._path == other._path

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._path))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self._path)!r})"
