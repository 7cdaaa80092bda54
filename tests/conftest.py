from typing import Any, Dict, List, Optional

import pytest

from chainalert.core.base import Notifier
from chainalert.core.chains import ChainRegistry
from chainalert.core.dedupe import DedupeStore
from chainalert.core.dispatcher import AlertDispatcher
from chainalert.core.processor import TransferProcessor
from chainalert.core.retry import RetryPolicy
from chainalert.core.threshold import ThresholdEvaluator
from chainalert.core.web3.base import TRANSFER_EVENT_TOPIC
from chainalert.core.web3.token_meta import TokenMetadataResolver

INTERACTION = "0x" + "ab" * 20
TOKEN = "0x6b175474e89094c44da98b954eedeac495271d0f"
SENDER = "0x" + "11" * 20
RECIPIENT = "0x" + "22" * 20
TX_HASH = "0x" + "aa" * 32
OTHER_TX_HASH = "0x" + "bb" * 32
ONE_TOKEN = 10**18


def address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:]


def transfer_log(
    value: int = ONE_TOKEN,
    token: str = TOKEN,
    sender: str = SENDER,
    recipient: str = RECIPIENT,
    **extra: Any,
) -> Dict[str, Any]:
    """Raw ERC20 Transfer log as a node or indexer would return it"""
    log = {
        "address": token,
        "topics": [TRANSFER_EVENT_TOPIC, address_topic(sender), address_topic(recipient)],
        "data": hex(value),
    }
    log.update(extra)
    return log


class FakeChainClient:
    """In-memory stand-in for ChainClient"""

    def __init__(
        self,
        head: int = 0,
        blocks: Optional[Dict[int, Dict[str, Any]]] = None,
        transactions: Optional[Dict[str, Dict[str, Any]]] = None,
        receipts: Optional[Dict[str, Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        self.head = head
        self.blocks = blocks or {}
        self.transactions = transactions or {}
        self.receipts = receipts or {}
        self.metadata = metadata or {}
        self.metadata_calls: List[tuple] = []
        self.closed = False

    async def get_block_number(self) -> int:
        return self.head

    async def get_block(self, block_number: int, full_transactions: bool = True) -> Dict[str, Any]:
        block = self.blocks.get(block_number, {"number": block_number, "transactions": []})
        return dict(block)

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.transactions.get(tx_hash)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.receipts.get(tx_hash)

    async def read_erc20(self, address: str, fn: str) -> Any:
        self.metadata_calls.append((address, fn))
        value = self.metadata.get(address.lower(), {}).get(fn)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise ValueError(f"execution reverted: {fn}")
        return value

    async def close(self) -> None:
        self.closed = True


class RecordingNotifier(Notifier):
    """Collects sent messages; fails the first ``failures`` sends"""

    def __init__(self, failures: int = 0):
        self.messages: List[str] = []
        self.calls = 0
        self.failures = failures
        self.closed = False

    async def send(self, text: str) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("telegram unavailable")
        self.messages.append(text)

    async def close(self) -> None:
        self.closed = True


class FakeRedis:
    """Subset of redis.asyncio.Redis used by DedupeStore"""

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.ttls: Dict[str, Any] = {}
        self.down = False
        self.pings = 0
        self.closed = False

    def _check(self):
        if self.down:
            raise ConnectionError("redis down")

    async def set(self, key, value, nx=False, ex=None):
        self._check()
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    async def exists(self, key):
        self._check()
        return 1 if key in self.data else 0

    async def ping(self):
        self.pings += 1
        self._check()
        return True

    async def aclose(self):
        self.closed = True


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_delay: float) -> None:
    pass


DAI_METADATA = {TOKEN: {"symbol": "DAI", "name": "Dai Stablecoin", "decimals": 18}}


@pytest.fixture
def chain_client():
    return FakeChainClient(metadata=dict(DAI_METADATA))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dedupe():
    return DedupeStore()


@pytest.fixture
def registry():
    return ChainRegistry()


def make_processor(
    registry: ChainRegistry,
    notifier: Notifier,
    dedupe: DedupeStore,
    clients: Optional[Dict[str, Any]] = None,
    thresholds: Optional[ThresholdEvaluator] = None,
    **kwargs: Any,
) -> TransferProcessor:
    return TransferProcessor(
        registry=registry,
        metadata=TokenMetadataResolver(clients or {}, timeout=1),
        thresholds=thresholds or ThresholdEvaluator(),
        dedupe=dedupe,
        dispatcher=AlertDispatcher(
            notifier, RetryPolicy(max_attempts=3, base_delay=0.01), sleep=no_sleep
        ),
        **kwargs,
    )


@pytest.fixture
def processor(registry, notifier, dedupe, chain_client):
    return make_processor(registry, notifier, dedupe, clients={"eth": chain_client})
