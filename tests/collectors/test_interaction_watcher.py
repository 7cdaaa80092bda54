from unittest.mock import AsyncMock

import pytest

from chainalert.collectors.interaction_watcher import InteractionWatcher
from chainalert.core.base import Collector
from chainalert.core.chains import ChainKey
from chainalert.core.storage import BlockchainStateStore

from conftest import INTERACTION, ONE_TOKEN, SENDER, FakeChainClient, transfer_log

TX_A = "0x" + "a1" * 32
TX_B = "0x" + "b2" * 32
TX_OTHER = "0x" + "c3" * 32


def chain_client(head=3):
    return FakeChainClient(
        head=head,
        blocks={
            1: {
                "number": 1,
                "timestamp": 1704067200,
                "transactions": [
                    {"hash": TX_A, "from": SENDER, "to": INTERACTION.upper().replace("0X", "0x")},
                    {"hash": TX_OTHER, "from": SENDER, "to": "0x" + "99" * 20},
                ],
            },
            2: {"number": 2, "timestamp": 1704067212, "transactions": []},
            3: {
                "number": 3,
                "timestamp": 1704067224,
                "transactions": [{"hash": TX_B, "from": SENDER, "to": INTERACTION}],
            },
        },
        receipts={
            TX_A: {"transactionHash": TX_A, "logs": [transfer_log(ONE_TOKEN, logIndex=0)]},
            TX_B: {"transactionHash": TX_B, "logs": [transfer_log(2 * ONE_TOKEN, logIndex=5)]},
        },
    )


@pytest.fixture
def state_store(tmp_path):
    store = BlockchainStateStore(str(tmp_path / "state"))
    yield store
    store.close()


def make_watcher(state_store, client=None, **kwargs):
    return InteractionWatcher(
        chain="eth",
        interaction_contract=INTERACTION,
        client=client or chain_client(),
        state_store=state_store,
        polling_interval=0.01,
        **kwargs,
    )


def test_watcher_is_registered():
    assert Collector._registry["interaction_watcher"] is InteractionWatcher


def test_rejects_invalid_contract(state_store):
    with pytest.raises(ValueError):
        InteractionWatcher(chain="eth", interaction_contract="0x1234", client=chain_client(), state_store=state_store)


@pytest.mark.asyncio
async def test_scan_range_yields_matching_transactions(state_store):
    watcher = make_watcher(state_store)

    candidates = [c async for c in watcher._scan_range(1, 3)]

    assert [c.tx_hash for c in candidates] == [TX_A, TX_B]
    first = candidates[0]
    assert first.chain == ChainKey.ETH
    assert first.sender == SENDER
    assert first.block_number == 1
    assert first.block_timestamp.timestamp() == 1704067200
    assert [t.value for t in first.transfers] == [ONE_TOKEN]
    assert watcher.is_seen(TX_A) and watcher.is_seen(TX_B)


@pytest.mark.asyncio
async def test_seen_transactions_are_not_yielded_again(state_store):
    watcher = make_watcher(state_store)
    watcher.mark_seen(TX_A)

    candidates = [c async for c in watcher._scan_range(1, 3)]

    assert [c.tx_hash for c in candidates] == [TX_B]


@pytest.mark.asyncio
async def test_missing_receipt_is_skipped(state_store):
    client = chain_client()
    del client.receipts[TX_A]
    watcher = make_watcher(state_store, client=client)

    candidates = [c async for c in watcher._scan_range(1, 1)]

    assert candidates == []
    assert not watcher.is_seen(TX_A)


def test_seen_set_is_bounded(state_store):
    watcher = make_watcher(state_store, seen_tx_limit=2)

    for tx_hash in (TX_A, TX_B, TX_OTHER):
        watcher.mark_seen(tx_hash)

    assert not watcher.is_seen(TX_A)
    assert watcher.is_seen(TX_B) and watcher.is_seen(TX_OTHER)


@pytest.mark.asyncio
async def test_events_chunk_and_persist_progress(state_store):
    watcher = make_watcher(state_store, start_block=1, max_blocks_per_scan=2)
    events = watcher.events()

    first = await events.__anext__()
    assert first.tx_hash == TX_A
    assert state_store.get_last_processed_block(watcher.block_key) is None

    second = await events.__anext__()
    assert second.tx_hash == TX_B
    # First chunk (blocks 1-2) was persisted once all its candidates were consumed
    assert state_store.get_last_processed_block(watcher.block_key) == 2

    await events.aclose()
    watcher._running = False


@pytest.mark.asyncio
async def test_resumes_from_stored_block(state_store):
    state_store.set_last_processed_block("interaction_watcher:eth", 2)
    watcher = make_watcher(state_store, start_block=1)

    await watcher.start()

    assert watcher.last_checked_block == 2


@pytest.mark.asyncio
async def test_starts_at_head_without_state_or_start_block(state_store):
    client = chain_client(head=42)
    watcher = make_watcher(state_store, client=client)

    await watcher.start()

    assert watcher.last_checked_block == 42


@pytest.mark.asyncio
async def test_rpc_errors_do_not_end_the_stream(state_store):
    client = chain_client()
    client.get_block_number = AsyncMock(side_effect=[ConnectionError("node down"), 1])
    watcher = make_watcher(state_store, client=client, start_block=1)
    events = watcher.events()

    candidate = await events.__anext__()

    assert candidate.tx_hash == TX_A
    await events.aclose()
    watcher._running = False
