"""Registration managers: AgentManager1, GattManager1, LEAdvertisingManager1 and
ProfileManager1."""

import logging
from typing import Any, Mapping

from dbus_next import Variant

from .constants import (
    AGENT_MANAGER_INTERFACE,
    BLUEZ_ROOT_PATH,
    GATT_MANAGER_INTERFACE,
    LE_ADVERTISING_MANAGER_INTERFACE,
    PROFILE_MANAGER_INTERFACE,
)
from .errors import ArgumentError
from .paths import ObjectKind, ObjectPath
from .proxy import BluezProxy

logger = logging.getLogger(__name__)

# ProfileManager1.RegisterProfile option signatures
PROFILE_OPTION_SIGNATURES = {
    "Name": "s",
    "Service": "s",
    "Role": "s",
    "Channel": "q",
    "PSM": "q",
    "RequireAuthentication": "b",
    "RequireAuthorization": "b",
    "AutoConnect": "b",
    "ServiceRecord": "s",
    "Version": "q",
    "Features": "q",
}


def _variant_options(options: Mapping[str, Any] | None, signatures: Mapping[str, str]) -> dict[str, Variant]:
    result: dict[str, Variant] = {}
    for key, value in (options or {}).items():
        if isinstance(value, Variant):
            result[key] = value
        elif key in signatures:
            result[key] = Variant(signatures[key], value)
        else:
            raise ArgumentError(f"unrecognized option {key!r}")
    return result


class AgentManager(BluezProxy):
    """Wraps org.bluez.AgentManager1 on /org/bluez."""

    INTERFACE = AGENT_MANAGER_INTERFACE

    def __init__(self, exchange, mirror, path: str = BLUEZ_ROOT_PATH):
        super().__init__(exchange, mirror, path)

    async def register_agent(self, agent_path: str, capability: str) -> None:
        await self._call("RegisterAgent", "os", ObjectPath(agent_path), capability)
        logger.debug("RegisterAgent %s (%s)", agent_path, capability)

    async def request_default_agent(self, agent_path: str) -> None:
        await self._call("RequestDefaultAgent", "o", ObjectPath(agent_path))
        logger.debug("RequestDefaultAgent %s", agent_path)

    async def unregister_agent(self, agent_path: str) -> None:
        await self._call("UnregisterAgent", "o", ObjectPath(agent_path))
        logger.debug("UnregisterAgent %s", agent_path)


class GattManager(BluezProxy):
    """Wraps org.bluez.GattManager1 on an adapter (local GATT applications)."""

    INTERFACE = GATT_MANAGER_INTERFACE
    KIND = ObjectKind.ADAPTER

    async def register_application(self, app_path: str, options: Mapping[str, Variant] | None = None) -> None:
        await self._call(
            "RegisterApplication", "oa{sv}", ObjectPath(app_path), _variant_options(options, {})
        )
        logger.info("GATT application %s registered on %s", app_path, self._path)

    async def unregister_application(self, app_path: str) -> None:
        await self._call("UnregisterApplication", "o", ObjectPath(app_path))
        logger.info("GATT application %s unregistered from %s", app_path, self._path)


class LEAdvertisingManager(BluezProxy):
    """Wraps org.bluez.LEAdvertisingManager1 on an adapter."""

    INTERFACE = LE_ADVERTISING_MANAGER_INTERFACE
    KIND = ObjectKind.ADAPTER

    @property
    def active_instances(self) -> int:
        return self._prop("ActiveInstances", 0)

    @property
    def supported_instances(self) -> int:
        return self._prop("SupportedInstances", 0)

    @property
    def supported_includes(self) -> frozenset[str]:
        return frozenset(self._prop("SupportedIncludes") or ())

    @property
    def supported_secondary_channels(self) -> frozenset[str]:
        return frozenset(self._prop("SupportedSecondaryChannels") or ())

    async def register_advertisement(
        self, advertisement_path: str, options: Mapping[str, Variant] | None = None
    ) -> None:
        await self._call(
            "RegisterAdvertisement",
            "oa{sv}",
            ObjectPath(advertisement_path),
            _variant_options(options, {}),
        )
        logger.info("Advertisement %s registered on %s", advertisement_path, self._path)

    async def unregister_advertisement(self, advertisement_path: str) -> None:
        await self._call("UnregisterAdvertisement", "o", ObjectPath(advertisement_path))
        logger.info("Advertisement %s unregistered from %s", advertisement_path, self._path)


class ProfileManager(BluezProxy):
    """Wraps org.bluez.ProfileManager1 on /org/bluez."""

    INTERFACE = PROFILE_MANAGER_INTERFACE

    def __init__(self, exchange, mirror, path: str = BLUEZ_ROOT_PATH):
        super().__init__(exchange, mirror, path)

    async def register_profile(
        self, profile_path: str, uuid: str, options: Mapping[str, Any] | None = None
    ) -> None:
        """Register a profile implementation exported at *profile_path*.

        Plain option values are wrapped using the documented signatures;
        pass a Variant for anything else.
        """
        await self._call(
            "RegisterProfile",
            "osa{sv}",
            ObjectPath(profile_path),
            uuid,
            _variant_options(options, PROFILE_OPTION_SIGNATURES),
        )
        logger.info("Profile %s registered at %s", uuid, profile_path)

    async def unregister_profile(self, profile_path: str) -> None:
        await self._call("UnregisterProfile", "o", ObjectPath(profile_path))
        logger.info("Profile at %s unregistered", profile_path)
