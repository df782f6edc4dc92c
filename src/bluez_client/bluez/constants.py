"""BlueZ D-Bus names, error strings and GATT flag spellings."""

import enum

# BlueZ D-Bus service and interface names
BLUEZ_SERVICE = "org.bluez"
BLUEZ_ROOT_PATH = "/org/bluez"
ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"
GATT_SERVICE_INTERFACE = "org.bluez.GattService1"
GATT_CHARACTERISTIC_INTERFACE = "org.bluez.GattCharacteristic1"
GATT_DESCRIPTOR_INTERFACE = "org.bluez.GattDescriptor1"
GATT_MANAGER_INTERFACE = "org.bluez.GattManager1"
AGENT_INTERFACE = "org.bluez.Agent1"
AGENT_MANAGER_INTERFACE = "org.bluez.AgentManager1"
PROFILE_MANAGER_INTERFACE = "org.bluez.ProfileManager1"
LE_ADVERTISEMENT_INTERFACE = "org.bluez.LEAdvertisement1"
LE_ADVERTISING_MANAGER_INTERFACE = "org.bluez.LEAdvertisingManager1"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"

# Message bus daemon
DBUS_SERVICE = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"
DBUS_INTERFACE = "org.freedesktop.DBus"

# Default adapter path
DEFAULT_ADAPTER_PATH = "/org/bluez/hci0"

# Default object path for the exported pairing agent
AGENT_PATH = "/org/bluez_client/agent"

# Default roots for exported GATT applications and advertisements
APPLICATION_PATH = "/org/bluez_client/app"
ADVERTISEMENT_PATH = "/org/bluez_client/advertisement"

# Interfaces every exported object carries; they don't make an object "live"
STANDARD_INTERFACES = frozenset({
    PROPERTIES_INTERFACE,
    "org.freedesktop.DBus.Introspectable",
    "org.freedesktop.DBus.Peer",
})

# ── Error names ──────────────────────────────────────────────────────
ERROR_PREFIX = "org.bluez.Error."

ERROR_FAILED = "org.bluez.Error.Failed"
ERROR_NOT_READY = "org.bluez.Error.NotReady"
ERROR_IN_PROGRESS = "org.bluez.Error.InProgress"
ERROR_NOT_SUPPORTED = "org.bluez.Error.NotSupported"
ERROR_AUTHENTICATION_FAILED = "org.bluez.Error.AuthenticationFailed"
ERROR_AUTHENTICATION_CANCELED = "org.bluez.Error.AuthenticationCanceled"
ERROR_AUTHENTICATION_REJECTED = "org.bluez.Error.AuthenticationRejected"
ERROR_AUTHENTICATION_TIMEOUT = "org.bluez.Error.AuthenticationTimeout"
ERROR_CONNECTION_ATTEMPT_FAILED = "org.bluez.Error.ConnectionAttemptFailed"
ERROR_INVALID_ARGUMENTS = "org.bluez.Error.InvalidArguments"
ERROR_ALREADY_EXISTS = "org.bluez.Error.AlreadyExists"
ERROR_DOES_NOT_EXIST = "org.bluez.Error.DoesNotExist"
ERROR_ALREADY_CONNECTED = "org.bluez.Error.AlreadyConnected"
ERROR_NOT_CONNECTED = "org.bluez.Error.NotConnected"
ERROR_NOT_AUTHORIZED = "org.bluez.Error.NotAuthorized"
ERROR_NOT_PERMITTED = "org.bluez.Error.NotPermitted"
ERROR_NOT_AVAILABLE = "org.bluez.Error.NotAvailable"
ERROR_INVALID_VALUE_LENGTH = "org.bluez.Error.InvalidValueLength"
ERROR_INVALID_OFFSET = "org.bluez.Error.InvalidOffset"
ERROR_REJECTED = "org.bluez.Error.Rejected"
ERROR_CANCELED = "org.bluez.Error.Canceled"

# Bus-level errors that mean BlueZ (or the bus) is gone rather than the call failing
DBUS_ERROR_SERVICE_UNKNOWN = "org.freedesktop.DBus.Error.ServiceUnknown"
DBUS_ERROR_NAME_HAS_NO_OWNER = "org.freedesktop.DBus.Error.NameHasNoOwner"
DBUS_ERROR_NO_REPLY = "org.freedesktop.DBus.Error.NoReply"
DBUS_ERROR_DISCONNECTED = "org.freedesktop.DBus.Error.Disconnected"
DBUS_ERROR_UNKNOWN_OBJECT = "org.freedesktop.DBus.Error.UnknownObject"


# ── GATT flags ───────────────────────────────────────────────────────
class CharacteristicFlag(str, enum.Enum):
    """Values of GattCharacteristic1.Flags, spelled as BlueZ reports them."""

    BROADCAST = "broadcast"
    READ = "read"
    WRITE_WITHOUT_RESPONSE = "write-without-response"
    WRITE = "write"
    NOTIFY = "notify"
    INDICATE = "indicate"
    AUTHENTICATED_SIGNED_WRITES = "authenticated-signed-writes"
    EXTENDED_PROPERTIES = "extended-properties"
    RELIABLE_WRITE = "reliable-write"
    WRITABLE_AUXILIARIES = "writable-auxiliaries"
    ENCRYPT_READ = "encrypt-read"
    ENCRYPT_WRITE = "encrypt-write"
    ENCRYPT_NOTIFY = "encrypt-notify"
    ENCRYPT_INDICATE = "encrypt-indicate"
    ENCRYPT_AUTHENTICATED_READ = "encrypt-authenticated-read"
    ENCRYPT_AUTHENTICATED_WRITE = "encrypt-authenticated-write"
    ENCRYPT_AUTHENTICATED_NOTIFY = "encrypt-authenticated-notify"
    ENCRYPT_AUTHENTICATED_INDICATE = "encrypt-authenticated-indicate"
    SECURE_READ = "secure-read"
    SECURE_WRITE = "secure-write"
    SECURE_NOTIFY = "secure-notify"
    SECURE_INDICATE = "secure-indicate"
    AUTHORIZE = "authorize"


class DescriptorFlag(str, enum.Enum):
    """Values of GattDescriptor1.Flags."""

    READ = "read"
    WRITE = "write"
    ENCRYPT_READ = "encrypt-read"
    ENCRYPT_WRITE = "encrypt-write"
    ENCRYPT_AUTHENTICATED_READ = "encrypt-authenticated-read"
    ENCRYPT_AUTHENTICATED_WRITE = "encrypt-authenticated-write"
    SECURE_READ = "secure-read"
    SECURE_WRITE = "secure-write"
    AUTHORIZE = "authorize"


# WriteValue "type" option
WRITE_TYPES = frozenset({"reliable", "request", "command"})

# SetDiscoveryFilter "Transport" values
DISCOVERY_TRANSPORTS = frozenset({"auto", "bredr", "le"})

# Agent IO capabilities accepted by AgentManager1.RegisterAgent
CAPABILITY_DISPLAY_ONLY = "DisplayOnly"
CAPABILITY_DISPLAY_YES_NO = "DisplayYesNo"
CAPABILITY_KEYBOARD_ONLY = "KeyboardOnly"
CAPABILITY_NO_INPUT_NO_OUTPUT = "NoInputNoOutput"
CAPABILITY_KEYBOARD_DISPLAY = "KeyboardDisplay"

# LEAdvertisement1 "Type" values and "Includes" entries
ADVERTISEMENT_TYPES = frozenset({"peripheral", "broadcast"})
ADVERTISING_INCLUDES = frozenset({"tx-power", "appearance", "local-name", "rsi"})

# Bluetooth Base UUID used to expand 16/32-bit short UUIDs
BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"
