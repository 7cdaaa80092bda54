import json

import pytest

from chainalert.core.chains import ChainRegistry
from chainalert.core.threshold import ThresholdEvaluator
from chainalert.errors import AuthenticationError, ConfigurationError
from chainalert.webhooks.moralis import (
    MoralisWebhookPipeline,
    find_interaction_tx_hashes,
    resolve_payload_chain,
)
from chainalert.webhooks.signature import compute_signature

from conftest import (
    INTERACTION,
    ONE_TOKEN,
    OTHER_TX_HASH,
    RECIPIENT,
    SENDER,
    TOKEN,
    TX_HASH,
    make_processor,
    transfer_log,
)

SECRET = "moralis-secret"


def stream_payload(**overrides):
    payload = {
        "confirmed": True,
        "chainId": "0x1",
        "block": {"number": "19000000", "timestamp": "1704067200"},
        "txs": [
            {"hash": TX_HASH, "fromAddress": SENDER, "toAddress": INTERACTION.upper().replace("0X", "0x")},
            {"hash": OTHER_TX_HASH, "fromAddress": SENDER, "toAddress": "0x" + "99" * 20},
        ],
        "erc20Transfers": [
            {
                "transactionHash": TX_HASH,
                "logIndex": "5",
                "contract": TOKEN,
                "from": SENDER,
                "to": RECIPIENT,
                "value": str(ONE_TOKEN),
                "tokenSymbol": "DAI",
                "tokenDecimals": "18",
            },
            {
                "transactionHash": OTHER_TX_HASH,
                "logIndex": "9",
                "contract": TOKEN,
                "from": SENDER,
                "to": RECIPIENT,
                "value": str(50 * ONE_TOKEN),
                "tokenSymbol": "DAI",
                "tokenDecimals": "18",
            },
        ],
    }
    payload.update(overrides)
    return payload


def signed(payload, secret=SECRET, header="x-signature"):
    body = json.dumps(payload).encode()
    return body, {header: compute_signature(secret, body)}


@pytest.fixture
def pipeline(registry, processor):
    return MoralisWebhookPipeline(SECRET, INTERACTION, registry, processor)


@pytest.mark.asyncio
async def test_valid_webhook_alerts_once(pipeline, notifier):
    body, headers = signed(stream_payload())

    result = await pipeline.handle(body, headers)
    replay = await pipeline.handle(body, headers)

    assert result.to_dict() == {"ok": True, "alerts_sent": 1}
    assert replay.alerts_sent == 0
    assert len(notifier.messages) == 1
    message = notifier.messages[0]
    assert "Amount: 1 DAI" in message
    assert "Chain: Ethereum (eth)" in message
    assert "Timestamp: 2024-01-01T00:00:00Z" in message
    assert f"Interaction: {INTERACTION}" in message


@pytest.mark.asyncio
async def test_bad_signature_has_no_side_effects(pipeline, notifier, dedupe):
    body, _ = signed(stream_payload())

    with pytest.raises(AuthenticationError):
        await pipeline.handle(body, {"x-signature": compute_signature("wrong", body)})
    with pytest.raises(AuthenticationError):
        await pipeline.handle(body, {})

    assert notifier.messages == []
    assert len(dedupe) == 0


@pytest.mark.asyncio
async def test_custom_signature_header(registry, processor, notifier):
    pipeline = MoralisWebhookPipeline(SECRET, INTERACTION, registry, processor, signature_header="X-Custom-Sig")
    body, headers = signed(stream_payload(), header="X-Custom-Sig")

    result = await pipeline.handle(body, headers)

    assert result.alerts_sent == 1


@pytest.mark.asyncio
async def test_missing_secret_is_configuration_error(registry, processor):
    pipeline = MoralisWebhookPipeline("", INTERACTION, registry, processor)
    body, headers = signed(stream_payload(), secret="")

    with pytest.raises(ConfigurationError):
        await pipeline.handle(body, headers)


@pytest.mark.asyncio
async def test_missing_contract_is_configuration_error(registry, processor):
    pipeline = MoralisWebhookPipeline(SECRET, "", registry, processor)
    body, headers = signed(stream_payload())

    with pytest.raises(ConfigurationError):
        await pipeline.handle(body, headers)


@pytest.mark.asyncio
async def test_malformed_body_is_ignored(pipeline):
    body = b"{not json"
    result = await pipeline.handle(body, {"x-signature": compute_signature(SECRET, body)})

    assert result.to_dict() == {"ok": True, "ignored": True, "reason": "malformed_payload", "alerts_sent": 0}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides,reason",
    [
        ({"chainId": "0x89"}, "unsupported_chain"),
        ({"txs": [{"hash": TX_HASH, "toAddress": "0x" + "99" * 20}]}, "no_interaction_tx"),
        ({"erc20Transfers": []}, "no_transfers"),
    ],
)
async def test_ignored_payloads(pipeline, notifier, overrides, reason):
    body, headers = signed(stream_payload(**overrides))

    result = await pipeline.handle(body, headers)

    assert result.ignored
    assert result.reason == reason
    assert notifier.messages == []


@pytest.mark.asyncio
async def test_chain_outside_allow_list_is_ignored(notifier, dedupe, processor):
    pipeline = MoralisWebhookPipeline(SECRET, INTERACTION, ChainRegistry(allowed=["bsc"]), processor)
    body, headers = signed(stream_payload())

    result = await pipeline.handle(body, headers)

    assert result.reason == "chain_not_allowed"
    assert notifier.messages == []


@pytest.mark.asyncio
async def test_raw_logs_resolve_metadata_over_rpc(pipeline, notifier, chain_client):
    payload = stream_payload(
        erc20Transfers=[],
        logs=[transfer_log(2 * ONE_TOKEN, transactionHash=TX_HASH, logIndex="3")],
    )
    body, headers = signed(payload)

    result = await pipeline.handle(body, headers)

    assert result.alerts_sent == 1
    assert "Amount: 2 DAI" in notifier.messages[0]
    assert len(chain_client.metadata_calls) == 3


def test_resolve_payload_chain_falls_back_to_name():
    assert resolve_payload_chain({"chainId": "0x38"}).value == "bsc"
    assert resolve_payload_chain({"chainId": "0x89", "chain": "base"}).value == "base"
    assert resolve_payload_chain({"chain": {"id": 56}}).value == "bsc"
    assert resolve_payload_chain({}) is None


def test_find_interaction_tx_hashes_single_tx_shape():
    payload = {"tx": {"hash": TX_HASH, "to": INTERACTION}}
    assert find_interaction_tx_hashes(payload, INTERACTION) == [TX_HASH]
    assert find_interaction_tx_hashes({"hash": TX_HASH, "to": SENDER}, INTERACTION) == []


@pytest.mark.asyncio
async def test_threshold_scenario_alerts_once(registry, notifier, dedupe, chain_client):
    processor = make_processor(
        registry, notifier, dedupe, clients={"eth": chain_client}, thresholds=ThresholdEvaluator({"DAI": "0.5"})
    )
    pipeline = MoralisWebhookPipeline(SECRET, INTERACTION, registry, processor)
    body, headers = signed(stream_payload())

    first = await pipeline.handle(body, headers)
    second = await pipeline.handle(body, headers)

    assert (first.alerts_sent, second.alerts_sent) == (1, 0)
    assert "Amount: 1 DAI" in notifier.messages[0]
