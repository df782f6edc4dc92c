import logging

import pytest

from bluez_client.__main__ import print_status, setup_logging


@pytest.mark.asyncio
async def test_print_status(client, capsys):
    print_status(client.adapters())
    out = capsys.readouterr().out.splitlines()
    assert out[0].startswith("hci0 00:11:22:33:44:55 powered=True")
    assert "devices=1" in out[0]
    assert out[1].strip().startswith("AA:BB:CC:DD:EE:FF 'Thermometer'")


def test_setup_logging_quiets_dbus_next():
    setup_logging("debug")
    assert logging.getLogger("dbus_next").level == logging.WARNING
