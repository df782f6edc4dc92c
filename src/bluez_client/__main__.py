"""Status dump and tree follower: ``python -m bluez_client``.

Prints the adapters and devices BlueZ currently knows, then logs objects as
they appear and disappear until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
import sys

from .blocking import BlockingClient
from .client import BluezClient
from .config import ClientConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level_name: str) -> None:
    """Configure logging to stdout."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # Quiet noisy libraries
    logging.getLogger("dbus_next").setLevel(logging.WARNING)


def print_status(adapters) -> None:
    for adapter in adapters:
        info = adapter.summary()
        print(
            f"{info['name']} {info['address']} powered={info['powered']} "
            f"discovering={info['discovering']} devices={info['devices']}"
        )
        for device in adapter.devices():
            d = device.summary()
            print(
                f"  {d['address']} {d['name']!r} paired={d['paired']} "
                f"connected={d['connected']} rssi={d['rssi']}"
            )


async def _follow(client: BluezClient, stop: asyncio.Event) -> None:
    logger = logging.getLogger(__name__)

    async def _additions():
        async with client.subscribe_additions() as sub:
            async for obj in sub:
                logger.info("Added %s (%s)", obj.path, obj.kind.value)

    async def _removals():
        async with client.subscribe_removals() as sub:
            async for path in sub:
                logger.info("Removed %s", path)

    tasks = [asyncio.create_task(_additions()), asyncio.create_task(_removals())]
    await stop.wait()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def main(config: ClientConfig) -> None:
    """Dump the tree, then follow changes until signalled to stop."""
    logger = logging.getLogger(__name__)
    client = await BluezClient.connect(config)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _signal_handler)

    try:
        print_status(client.adapters())
        await _follow(client, shutdown_event)
    finally:
        await client.close()


def main_blocking(config: ClientConfig) -> None:
    """Print the tree once using the blocking API."""
    with BlockingClient.connect(config) as client:
        print_status(client.adapters())


def run() -> None:
    config = ClientConfig.load()
    setup_logging(config.log_level)
    if config.execution_mode == "blocking":
        main_blocking(config)
    else:
        asyncio.run(main(config))


if __name__ == "__main__":
    run()
