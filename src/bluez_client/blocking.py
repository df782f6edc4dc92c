"""Blocking wrapper around the asyncio client.

The asyncio code is the only implementation.  :class:`BlockingRunner` owns a
private event loop on a dedicated thread (where the bus connection lives) and
parks the calling thread until each submitted coroutine finishes.
:class:`BlockingWrapper` routes every attribute read, method call and stream
step of a wrapped object through the runner, so ordering and error mapping
are exactly those of the asyncio API.
"""

import asyncio
import concurrent.futures
import functools
import inspect
import logging
import threading
from typing import Any, Coroutine

from .bluez.advertising import AdvertisementHandle, AdvertisingService
from .bluez.agent import AgentHandle, Challenge, PairingAgentService, PairingRequest
from .bluez.application import (
    ApplicationHandle,
    ExportedCharacteristic,
    GattApplication,
    GattApplicationService,
)
from .bluez.errors import BluezTimeoutError
from .bluez.mirror import ObjectManagerMirror
from .bluez.proxy import BluezProxy
from .client import BluezClient
from .config import ClientConfig

logger = logging.getLogger(__name__)

_DEFAULT = object()


class BlockingRunner:
    """Runs coroutines on a background event loop for blocking callers."""

    def __init__(self, call_timeout: float | None = None, name: str = "bluez-client-loop"):
        self.call_timeout = call_timeout
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name=name, daemon=True)
        self._thread.start()
        self._closed = False

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def run(self, coro: Coroutine, timeout: float | None = _DEFAULT) -> Any:
        """Run *coro* on the loop and block until it returns or raises.

        When *timeout* expires the caller stops waiting: the coroutine is
        cancelled and BluezTimeoutError is raised.
        """
        if self._closed:
            coro.close()
            raise RuntimeError("runner is closed")
        if threading.current_thread() is self._thread:
            coro.close()
            raise RuntimeError("blocking call made from the event loop thread")
        if timeout is _DEFAULT:
            timeout = self.call_timeout

        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise BluezTimeoutError(f"no result within {timeout}s") from None

    def call(self, fn, *args, **kwargs) -> Any:
        """Run a plain callable on the loop thread."""

        async def _invoke():
            return fn(*args, **kwargs)

        return self.run(_invoke())

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()
        logger.debug("Blocking runner stopped")

    def __enter__(self) -> "BlockingRunner":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


_WRAPPED_TYPES = (
    BluezProxy,
    AgentHandle,
    ApplicationHandle,
    GattApplication,
    ExportedCharacteristic,
    AdvertisementHandle,
    ObjectManagerMirror,
    PairingAgentService,
    GattApplicationService,
    AdvertisingService,
    BluezClient,
)


def wrap(value: Any, runner: BlockingRunner) -> Any:
    """Give *value* a blocking face if it is one of the package's async objects."""
    if isinstance(value, list):
        return [wrap(v, runner) for v in value]
    if isinstance(value, _WRAPPED_TYPES):
        return BlockingWrapper(value, runner)
    if hasattr(value, "__anext__"):
        return BlockingIterator(value, runner)
    return value


class BlockingWrapper:
    """Blocking view of an asyncio object."""

    def __init__(self, target: Any, runner: BlockingRunner):
        object.__setattr__(self, "_target", target)
        object.__setattr__(self, "_runner", runner)

    @property
    def wrapped(self) -> Any:
        return self._target

    def __getattr__(self, name: str) -> Any:
        runner = self._runner
        attr = runner.call(getattr, self._target, name)

        if inspect.iscoroutinefunction(attr):
            @functools.wraps(attr)
            def _blocking(*args, **kwargs):
                return wrap(runner.run(attr(*args, **kwargs)), runner)

            return _blocking

        if inspect.ismethod(attr) or inspect.isfunction(attr):
            @functools.wraps(attr)
            def _on_loop(*args, **kwargs):
                return wrap(runner.call(attr, *args, **kwargs), runner)

            return _on_loop

        return wrap(attr, runner)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("blocking wrappers are read-only")

    def __eq__(self, other: object) -> bool:
        if isinstance(other, BlockingWrapper):
            return self._target == other._target
        return self._target == other

    def __hash__(self) -> int:
        return hash(self._target)

    def __repr__(self) -> str:
        return f"Blocking({self._target!r})"


class BlockingIterator:
    """Plain iterator over an async stream (subscription or async generator)."""

    def __init__(self, source: Any, runner: BlockingRunner):
        self._source = source
        self._runner = runner

    def __iter__(self) -> "BlockingIterator":
        return self

    def __next__(self) -> Any:
        try:
            return wrap(self._runner.run(self._source.__anext__()), self._runner)
        except StopAsyncIteration:
            raise StopIteration from None

    def next(self, timeout: float | None = None) -> Any:
        """Next element, raising BluezTimeoutError after *timeout* seconds."""
        try:
            return wrap(self._runner.run(self._source.__anext__(), timeout), self._runner)
        except StopAsyncIteration:
            raise StopIteration from None

    def close(self) -> None:
        if hasattr(self._source, "aclose"):
            self._runner.run(self._source.aclose())
        else:
            self._runner.call(self._source.close)

    def __enter__(self) -> "BlockingIterator":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class BlockingClient(BlockingWrapper):
    """Blocking counterpart of :class:`BluezClient`.

    Every call parks the calling thread until BlueZ answers; concurrent
    callers on different threads proceed independently.
    """

    def __init__(self, client: BluezClient, runner: BlockingRunner, owns_runner: bool = True):
        super().__init__(client, runner)
        object.__setattr__(self, "_owns_runner", owns_runner)

    @classmethod
    def connect(cls, config: ClientConfig | None = None) -> "BlockingClient":
        config = config or ClientConfig()
        runner = BlockingRunner(config.blocking_call_timeout_seconds)
        try:
            client = runner.run(BluezClient.connect(config))
        except BaseException:
            runner.close()
            raise
        return cls(client, runner)

    @classmethod
    def from_bus(cls, bus_factory, config: ClientConfig | None = None) -> "BlockingClient":
        """Build a client around a bus created on the runner's loop thread.

        *bus_factory* is called with no arguments on the loop thread and must
        return an already connected bus.
        """
        config = config or ClientConfig()
        runner = BlockingRunner(config.blocking_call_timeout_seconds)
        try:
            client = runner.call(lambda: BluezClient(bus_factory(), config))
            runner.run(client.start())
        except BaseException:
            runner.close()
            raise
        return cls(client, runner)

    def register_agent(
        self,
        challenges: Challenge,
        handler,
        path: str | None = None,
        default: bool = True,
    ) -> BlockingWrapper:
        """Register a pairing agent whose *handler* is a plain function.

        The handler runs on a worker thread so it may block (e.g. prompt a
        user) without stalling the bus; the agent timeout still applies.
        """

        async def _threaded(request: PairingRequest):
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, handler, request)

        handle = self._runner.run(
            self._target.register_agent(challenges, _threaded, path=path, default=default)
        )
        return wrap(handle, self._runner)

    def close(self) -> None:
        try:
            self._runner.run(self._target.close())
        finally:
            if self._owns_runner:
                self._runner.close()

    def __enter__(self) -> "BlockingClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
