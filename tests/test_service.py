import asyncio
from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest

from chainalert.core.base import Collector
from chainalert.core.chains import ChainKey, ChainRegistry
from chainalert.core.events import Event, InteractionCandidate, TransferEvent
from chainalert.core.rate_limit import SlidingWindowRateLimiter
from chainalert.core.service import AlertService

from conftest import INTERACTION, ONE_TOKEN, RECIPIENT, SENDER, TOKEN, TX_HASH, FakeClock, make_processor


def candidate(chain=ChainKey.ETH, count=1) -> InteractionCandidate:
    return InteractionCandidate(
        chain=chain,
        tx_hash=TX_HASH,
        sender=SENDER,
        interaction_contract=INTERACTION,
        block_number=1,
        block_timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        transfers=[
            TransferEvent(
                tx_hash=TX_HASH,
                log_index=i,
                token_address=TOKEN,
                from_address=SENDER,
                to_address=RECIPIENT,
                value=ONE_TOKEN,
                symbol="DAI",
                decimals=18,
            )
            for i in range(count)
        ],
    )


class ListCollector(Collector):
    """Emits a fixed list of events, then idles"""

    def __init__(self, events, rate_limit=None):
        super().__init__()
        self._events = events
        self.rate_limiter = rate_limit

    async def events(self) -> AsyncGenerator[Event, None]:
        for event in self._events:
            yield event
        while self._running:
            await asyncio.sleep(0.01)


@pytest.fixture
def service(registry, notifier, dedupe, processor):
    return AlertService(registry=registry, processor=processor, dedupe=dedupe, notifier=notifier)


@pytest.mark.asyncio
async def test_handle_event_applies_rate_limit(service, notifier):
    collector = ListCollector([], rate_limit=SlidingWindowRateLimiter(2, clock=FakeClock()))

    sent = await service.handle_event(candidate(count=3), collector)

    assert sent == 2
    assert len(notifier.messages) == 2


@pytest.mark.asyncio
async def test_handle_event_respects_allow_list(notifier, dedupe, processor):
    service = AlertService(
        registry=ChainRegistry(allowed=["bsc"]), processor=processor, dedupe=dedupe, notifier=notifier
    )

    assert await service.handle_event(candidate()) == 0
    assert notifier.messages == []


@pytest.mark.asyncio
async def test_handle_event_ignores_other_events(service):
    assert await service.handle_event(Event(type="other")) == 0


@pytest.mark.asyncio
async def test_collectors_feed_processor_and_stop_cleanly(service, notifier, dedupe):
    collector = ListCollector([candidate(count=2)])
    client = AsyncMock()
    service.clients = {"eth": client}
    dedupe.close = AsyncMock()
    service.add_collector(collector)

    await service.start()
    for _ in range(100):
        if len(notifier.messages) == 2:
            break
        await asyncio.sleep(0.01)
    await service.stop()

    assert len(notifier.messages) == 2
    assert not collector.is_running
    assert notifier.closed
    dedupe.close.assert_awaited_once()
    client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_collector_is_restarted(registry, notifier, dedupe):
    processor = make_processor(registry, notifier, dedupe)

    class FlakyCollector(ListCollector):
        runs = 0

        async def events(self):
            FlakyCollector.runs += 1
            if FlakyCollector.runs == 1:
                raise ConnectionError("rpc down")
            async for event in super().events():
                yield event

    collector = FlakyCollector([candidate()])
    service = AlertService(
        registry=registry, processor=processor, dedupe=dedupe, notifier=notifier, restart_delay=0.01
    )
    service.add_collector(collector)

    await service.start()
    for _ in range(100):
        if notifier.messages:
            break
        await asyncio.sleep(0.01)
    await service.stop()

    assert FlakyCollector.runs >= 2
    assert len(notifier.messages) == 1
