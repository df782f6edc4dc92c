"""BlueZ Agent1 implementation answering pairing challenges.

BlueZ calls into this process whenever pairing needs a PIN, a passkey, a
confirmation or an authorization.  Every such call becomes a
:class:`PairingRequest` handed to caller-supplied decision logic, and every
call gets exactly one answer: the decision, a rejection when the decision
does not arrive within the configured timeout, or a cancellation when BlueZ
withdraws the request.
"""

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from dbus_next.errors import DBusError
from dbus_next.service import ServiceInterface, method

from .constants import (
    AGENT_INTERFACE,
    AGENT_PATH,
    CAPABILITY_DISPLAY_ONLY,
    CAPABILITY_DISPLAY_YES_NO,
    CAPABILITY_KEYBOARD_DISPLAY,
    CAPABILITY_KEYBOARD_ONLY,
    CAPABILITY_NO_INPUT_NO_OUTPUT,
    ERROR_CANCELED,
    ERROR_REJECTED,
)
from .errors import AlreadyExistsError, AlreadyRegisteredError, BluezError
from .exchange import BusExchange
from .managers import AgentManager
from .paths import ObjectPath

logger = logging.getLogger(__name__)


class Challenge(enum.Flag):
    """Kinds of pairing challenge an agent can answer."""

    DISPLAY_PIN = enum.auto()
    REQUEST_PIN = enum.auto()
    REQUEST_PASSKEY = enum.auto()
    DISPLAY_PASSKEY = enum.auto()
    CONFIRMATION = enum.auto()
    AUTHORIZATION = enum.auto()


ALL_CHALLENGES = (
    Challenge.DISPLAY_PIN
    | Challenge.REQUEST_PIN
    | Challenge.REQUEST_PASSKEY
    | Challenge.DISPLAY_PASSKEY
    | Challenge.CONFIRMATION
    | Challenge.AUTHORIZATION
)

_DISPLAY = Challenge.DISPLAY_PIN | Challenge.DISPLAY_PASSKEY
_KEYBOARD = Challenge.REQUEST_PIN | Challenge.REQUEST_PASSKEY


def capability_for(challenges: Challenge) -> str:
    """Derive the BlueZ IO capability string for a challenge set."""
    has_display = bool(challenges & _DISPLAY)
    has_keyboard = bool(challenges & _KEYBOARD)
    if has_keyboard and has_display:
        return CAPABILITY_KEYBOARD_DISPLAY
    if has_keyboard:
        return CAPABILITY_KEYBOARD_ONLY
    if has_display and challenges & Challenge.CONFIRMATION:
        return CAPABILITY_DISPLAY_YES_NO
    if has_display:
        return CAPABILITY_DISPLAY_ONLY
    return CAPABILITY_NO_INPUT_NO_OUTPUT


class RequestState(enum.Enum):
    AWAITING_DISPATCH = "awaiting_dispatch"
    AWAITING_DECISION = "awaiting_decision"
    RESPONDED = "responded"
    TIMED_OUT = "timed_out"


_TERMINAL = (RequestState.RESPONDED, RequestState.TIMED_OUT)


@dataclass
class PairingRequest:
    """One in-flight Agent1 callback."""

    kind: Challenge
    device: ObjectPath
    pincode: str | None = None
    passkey: int | None = None
    entered: int | None = None
    uuid: str | None = None
    state: RequestState = RequestState.AWAITING_DISPATCH
    canceled: bool = False

    def advance(self, state: RequestState) -> None:
        if self.state in _TERMINAL:
            raise RuntimeError(f"{self.kind.name} request for {self.device} already answered")
        self.state = state


Decision = Union[str, int, bool, None]
DecisionHandler = Callable[[PairingRequest], Union[Decision, Awaitable[Decision]]]


class AgentEndpoint:
    """Decision dispatch for one exported agent object."""

    def __init__(self, challenges: Challenge, handler: DecisionHandler, timeout: float):
        self.challenges = challenges
        self._handler = handler
        self._timeout = timeout
        self._pending: dict[asyncio.Future, PairingRequest] = {}
        self._closed = False

    @property
    def pending(self) -> list[PairingRequest]:
        return list(self._pending.values())

    async def dispatch(self, request: PairingRequest) -> Any:
        """Answer *request*; raises DBusError for every negative outcome."""
        if self._closed:
            request.advance(RequestState.RESPONDED)
            raise DBusError(ERROR_REJECTED, "Agent is no longer registered")
        if not request.kind & self.challenges:
            request.advance(RequestState.RESPONDED)
            logger.info("Rejecting unsupported %s request for %s", request.kind.name, request.device)
            raise DBusError(ERROR_REJECTED, f"NotSupported: {request.kind.name} challenges are not handled")

        request.advance(RequestState.AWAITING_DECISION)
        task = asyncio.ensure_future(self._decide(request))
        self._pending[task] = request
        try:
            decision = await asyncio.wait_for(task, self._timeout)
        except asyncio.TimeoutError:
            request.advance(RequestState.TIMED_OUT)
            logger.warning(
                "No decision for %s request from %s within %.1fs, rejecting",
                request.kind.name, request.device, self._timeout,
            )
            raise DBusError(ERROR_REJECTED, "Timed out waiting for a decision") from None
        except asyncio.CancelledError:
            if not request.canceled:
                raise
            request.advance(RequestState.RESPONDED)
            raise DBusError(ERROR_CANCELED, "Request canceled") from None
        except DBusError:
            request.advance(RequestState.RESPONDED)
            raise
        except Exception as e:
            request.advance(RequestState.RESPONDED)
            logger.warning("Pairing decision for %s failed: %s", request.device, e)
            raise DBusError(ERROR_REJECTED, f"Decision failed: {e}") from e
        finally:
            self._pending.pop(task, None)

        request.advance(RequestState.RESPONDED)
        return self._reply(request, decision)

    async def _decide(self, request: PairingRequest) -> Decision:
        result = self._handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    @staticmethod
    def _reply(request: PairingRequest, decision: Decision) -> Any:
        kind = request.kind
        if kind in (Challenge.DISPLAY_PIN, Challenge.DISPLAY_PASSKEY):
            return None
        if kind is Challenge.REQUEST_PIN:
            if isinstance(decision, str) and 1 <= len(decision) <= 16:
                logger.info("Supplying PIN for %s", request.device)
                return decision
        elif kind is Challenge.REQUEST_PASSKEY:
            if isinstance(decision, int) and not isinstance(decision, bool) and 0 <= decision <= 999999:
                logger.info("Supplying passkey for %s", request.device)
                return decision
        elif decision:
            logger.info("Accepted %s for %s", kind.name, request.device)
            return None
        logger.info("Rejected %s for %s", kind.name, request.device)
        raise DBusError(ERROR_REJECTED, f"{kind.name} rejected")

    def cancel_all(self) -> None:
        """BlueZ withdrew the outstanding request(s)."""
        for task, request in list(self._pending.items()):
            request.canceled = True
            task.cancel()

    def close(self) -> None:
        self._closed = True
        self.cancel_all()


class AgentInterface(ServiceInterface):
    """D-Bus implementation of org.bluez.Agent1.

    Each method only builds the request and hands it to the endpoint.
    """

    def __init__(self, endpoint: AgentEndpoint):
        super().__init__(AGENT_INTERFACE)
        self._endpoint = endpoint

    @method()
    def Release(self) -> None:
        """Called when BlueZ unregisters this agent."""
        logger.info("Agent released by BlueZ")

    @method()
    async def RequestPinCode(self, device: "o") -> "s":
        return await self._endpoint.dispatch(PairingRequest(Challenge.REQUEST_PIN, ObjectPath(device)))

    @method()
    async def DisplayPinCode(self, device: "o", pincode: "s") -> None:
        await self._endpoint.dispatch(
            PairingRequest(Challenge.DISPLAY_PIN, ObjectPath(device), pincode=pincode)
        )

    @method()
    async def RequestPasskey(self, device: "o") -> "u":
        return await self._endpoint.dispatch(
            PairingRequest(Challenge.REQUEST_PASSKEY, ObjectPath(device))
        )

    @method()
    async def DisplayPasskey(self, device: "o", passkey: "u", entered: "q") -> None:
        await self._endpoint.dispatch(
            PairingRequest(
                Challenge.DISPLAY_PASSKEY, ObjectPath(device), passkey=passkey, entered=entered
            )
        )

    @method()
    async def RequestConfirmation(self, device: "o", passkey: "u") -> None:
        await self._endpoint.dispatch(
            PairingRequest(Challenge.CONFIRMATION, ObjectPath(device), passkey=passkey)
        )

    @method()
    async def RequestAuthorization(self, device: "o") -> None:
        await self._endpoint.dispatch(PairingRequest(Challenge.AUTHORIZATION, ObjectPath(device)))

    @method()
    async def AuthorizeService(self, device: "o", uuid: "s") -> None:
        await self._endpoint.dispatch(
            PairingRequest(Challenge.AUTHORIZATION, ObjectPath(device), uuid=uuid)
        )

    @method()
    def Cancel(self) -> None:
        """Pairing request was cancelled."""
        logger.info("Agent: pairing cancelled by BlueZ")
        self._endpoint.cancel_all()


class AgentHandle:
    """A registered agent; unregister() is the only way to drop it."""

    def __init__(
        self,
        service: "PairingAgentService",
        path: ObjectPath,
        endpoint: AgentEndpoint,
        interface: AgentInterface,
        default: bool,
    ):
        self._service = service
        self.path = path
        self.endpoint = endpoint
        self.interface = interface
        self.default = default
        self.registered = True

    @property
    def challenges(self) -> Challenge:
        return self.endpoint.challenges

    @property
    def capability(self) -> str:
        return capability_for(self.endpoint.challenges)

    async def unregister(self) -> None:
        await self._service.unregister(self)

    def __repr__(self) -> str:
        return f"AgentHandle({str(self.path)!r}, {self.capability}, default={self.default})"


class PairingAgentService:
    """Manages the lifecycle of pairing agents exported on the bus."""

    def __init__(self, exchange: BusExchange, manager: AgentManager, timeout: float = 20.0):
        self._exchange = exchange
        self._manager = manager
        self._timeout = timeout
        self._agents: dict[ObjectPath, AgentHandle] = {}

    @property
    def default_agent(self) -> AgentHandle | None:
        for handle in self._agents.values():
            if handle.default:
                return handle
        return None

    @property
    def agents(self) -> list[AgentHandle]:
        return list(self._agents.values())

    async def register(
        self,
        challenges: Challenge,
        handler: DecisionHandler,
        path: str | None = None,
        default: bool = True,
        timeout: float | None = None,
    ) -> AgentHandle:
        """Export an agent and register it with BlueZ.

        Raises AlreadyRegisteredError if *default* is requested while a
        default agent is registered, or if *path* is already in use.
        """
        path = ObjectPath(path or AGENT_PATH)
        if default and self.default_agent is not None:
            raise AlreadyRegisteredError(
                f"default agent already registered at {self.default_agent.path}"
            )
        if path in self._agents:
            raise AlreadyRegisteredError(f"an agent is already registered at {path}")

        endpoint = AgentEndpoint(challenges, handler, self._timeout if timeout is None else timeout)
        interface = AgentInterface(endpoint)
        capability = capability_for(challenges)

        self._exchange.export(path, interface)
        registered = False
        try:
            await self._manager.register_agent(path, capability)
            registered = True
            if default:
                await self._manager.request_default_agent(path)
        except BluezError as e:
            if registered:
                try:
                    await self._manager.unregister_agent(path)
                except BluezError as rollback_error:
                    logger.debug("Rollback UnregisterAgent failed: %s", rollback_error)
            self._exchange.unexport(path, interface)
            if isinstance(e, AlreadyExistsError):
                raise AlreadyRegisteredError(f"BlueZ refused agent at {path}: {e}") from e
            raise

        handle = AgentHandle(self, path, endpoint, interface, default)
        self._agents[path] = handle
        logger.info(
            "Pairing agent registered at %s (capability: %s%s)",
            path, capability, ", default" if default else "",
        )
        return handle

    async def unregister(self, handle: AgentHandle) -> None:
        """Unregister from BlueZ and stop answering callbacks.

        The local registration is dropped even when BlueZ reports an error;
        the error is still raised.
        """
        if not handle.registered:
            return
        handle.endpoint.close()
        try:
            await self._manager.unregister_agent(handle.path)
        finally:
            self._exchange.unexport(handle.path, handle.interface)
            self._agents.pop(handle.path, None)
            handle.registered = False
            logger.info("Pairing agent at %s unregistered", handle.path)

    async def unregister_all(self) -> None:
        for handle in list(self._agents.values()):
            try:
                await handle.unregister()
            except BluezError as e:
                logger.warning("Agent unregister failed for %s: %s", handle.path, e)
