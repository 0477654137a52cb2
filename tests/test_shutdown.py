"""Tests for mailtap.shutdown."""

from __future__ import annotations

import asyncio
import os
import signal

import pytest
import pytest_asyncio

from mailtap.clock import IntervalTicker
from mailtap.errors import ShutdownRequested
from mailtap.shutdown import install_signal_handlers


@pytest_asyncio.fixture
async def event():
    e = asyncio.Event()
    install_signal_handlers(e)
    yield e
    loop = asyncio.get_running_loop()
    loop.remove_signal_handler(signal.SIGTERM)
    loop.remove_signal_handler(signal.SIGINT)


class TestInstallSignalHandlers:
    @pytest.mark.asyncio
    async def test_sigterm_sets_event(self, event: asyncio.Event):
        assert not event.is_set()
        os.kill(os.getpid(), signal.SIGTERM)
        # The signal self-pipe needs an I/O poll cycle, not just sleep(0).
        await asyncio.sleep(0.05)
        assert event.is_set()

    @pytest.mark.asyncio
    async def test_multiple_signals_are_idempotent(self, event: asyncio.Event):
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.sleep(0.05)
        assert event.is_set()
        os.kill(os.getpid(), signal.SIGINT)
        await asyncio.sleep(0.05)
        assert event.is_set()

    @pytest.mark.asyncio
    async def test_signal_stops_waiting_ticker(self, event: asyncio.Event):
        ticker = IntervalTicker(60.0, event)
        wait = asyncio.create_task(ticker.wait())
        await asyncio.sleep(0.01)

        os.kill(os.getpid(), signal.SIGTERM)

        with pytest.raises(ShutdownRequested):
            await asyncio.wait_for(wait, timeout=5)

    @pytest.mark.asyncio
    async def test_handlers_registered_for_both_signals(self):
        install_signal_handlers(asyncio.Event())
        loop = asyncio.get_running_loop()

        assert loop.remove_signal_handler(signal.SIGTERM) is True
        assert loop.remove_signal_handler(signal.SIGINT) is True
