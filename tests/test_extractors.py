from hexbytes import HexBytes

from chainalert.core.extractors import (
    RawLogTransferExtractor,
    ReceiptTransferExtractor,
    StructuredTransferExtractor,
    decode_transfer_log,
    extract_transfers,
    parse_uint,
)
from chainalert.core.web3.base import TRANSFER_EVENT_TOPIC

from conftest import (
    ONE_TOKEN,
    OTHER_TX_HASH,
    RECIPIENT,
    SENDER,
    TOKEN,
    TX_HASH,
    address_topic,
    transfer_log,
)

IDENTITY_FIELDS = ("tx_hash", "log_index", "token_address", "from_address", "to_address", "value")


def identity(transfer):
    return tuple(getattr(transfer, field) for field in IDENTITY_FIELDS)


def structured_payload():
    return {
        "erc20Transfers": [
            {
                "transactionHash": TX_HASH.upper().replace("0X", "0x"),
                "logIndex": "7",
                "contract": TOKEN.upper().replace("0X", "0x"),
                "from": SENDER,
                "to": RECIPIENT,
                "value": str(25 * ONE_TOKEN),
                "tokenSymbol": "DAI",
                "tokenDecimals": "18",
            }
        ]
    }


def raw_log_payload():
    return {
        "logs": [
            transfer_log(25 * ONE_TOKEN, transactionHash=TX_HASH, logIndex="0x7"),
        ]
    }


def test_parse_uint():
    assert parse_uint(5) == 5
    assert parse_uint("42") == 42
    assert parse_uint("0x2a") == 42
    assert parse_uint(str(2**200)) == 2**200
    assert parse_uint(-1) is None
    assert parse_uint(1.5) is None
    assert parse_uint(True) is None
    assert parse_uint("0x") is None
    assert parse_uint("12abc") is None


def test_structured_extraction_normalizes_fields():
    transfers = StructuredTransferExtractor().extract(structured_payload())

    assert len(transfers) == 1
    transfer = transfers[0]
    assert transfer.tx_hash == TX_HASH
    assert transfer.token_address == TOKEN
    assert transfer.log_index == 7
    assert transfer.value == 25 * ONE_TOKEN
    assert transfer.symbol == "DAI"
    assert transfer.decimals == 18


def test_structured_and_raw_log_payloads_agree():
    structured = StructuredTransferExtractor().extract(structured_payload())
    raw = RawLogTransferExtractor().extract(raw_log_payload())

    assert [identity(t) for t in structured] == [identity(t) for t in raw]
    assert raw[0].symbol is None and raw[0].decimals is None


def test_structured_drops_invalid_entries_individually():
    payload = structured_payload()
    payload["erc20Transfers"] += [
        {"transactionHash": "0x1234", "logIndex": 1, "contract": TOKEN, "from": SENDER, "to": RECIPIENT, "value": "1"},
        {"transactionHash": OTHER_TX_HASH, "logIndex": 2, "contract": TOKEN, "from": SENDER, "to": RECIPIENT, "value": 1.5},
        "not a transfer",
        {"transactionHash": OTHER_TX_HASH, "logIndex": 3, "contract": TOKEN, "from": SENDER, "to": RECIPIENT, "value": "9"},
    ]

    transfers = StructuredTransferExtractor().extract(payload)

    assert [(t.tx_hash, t.log_index) for t in transfers] == [(TX_HASH, 7), (OTHER_TX_HASH, 3)]


def test_raw_logs_nested_under_txs_inherit_hash():
    payload = {"txs": [{"hash": TX_HASH, "logs": [transfer_log(logIndex=3)]}]}

    transfers = RawLogTransferExtractor().extract(payload)

    assert len(transfers) == 1
    assert transfers[0].tx_hash == TX_HASH
    assert transfers[0].log_index == 3


def test_raw_logs_accept_flat_topic_fields():
    log = transfer_log(transactionHash=TX_HASH, logIndex=4)
    topics = log.pop("topics")
    log.update({"topic0": topics[0], "topic1": topics[1], "topic2": topics[2], "topic3": None})

    transfers = RawLogTransferExtractor().extract({"logs": [log]})

    assert [identity(t) for t in transfers] == [(TX_HASH, 4, TOKEN, SENDER, RECIPIENT, ONE_TOKEN)]


def test_decode_ignores_non_transfer_logs():
    # ERC721 Transfer carries the token id as a fourth topic
    erc721 = transfer_log(transactionHash=TX_HASH, logIndex=1)
    erc721["topics"].append("0x" + "0" * 63 + "1")
    assert decode_transfer_log(erc721) is None

    approval = transfer_log(transactionHash=TX_HASH, logIndex=1)
    approval["topics"][0] = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"
    assert decode_transfer_log(approval) is None

    empty_data = transfer_log(transactionHash=TX_HASH, logIndex=1)
    empty_data["data"] = "0x"
    assert decode_transfer_log(empty_data) is None

    dirty_topic = transfer_log(transactionHash=TX_HASH, logIndex=1)
    dirty_topic["topics"][1] = "0x" + "ff" * 32
    assert decode_transfer_log(dirty_topic) is None


def test_decode_accepts_hexbytes_values():
    log = {
        "address": TOKEN,
        "topics": [
            HexBytes(TRANSFER_EVENT_TOPIC),
            HexBytes(address_topic(SENDER)),
            HexBytes(address_topic(RECIPIENT)),
        ],
        "data": HexBytes(ONE_TOKEN.to_bytes(32, "big")),
        "logIndex": 9,
        "transactionHash": HexBytes(TX_HASH),
    }

    transfer = decode_transfer_log(log)

    assert identity(transfer) == (TX_HASH, 9, TOKEN, SENDER, RECIPIENT, ONE_TOKEN)


def test_receipt_extraction_uses_position_and_sorts():
    receipt = {
        "transactionHash": TX_HASH,
        "logs": [
            transfer_log(2 * ONE_TOKEN, logIndex=12),
            {"address": TOKEN, "topics": ["0x" + "12" * 32], "data": "0x"},
            transfer_log(ONE_TOKEN),
        ],
    }

    transfers = ReceiptTransferExtractor().extract(receipt)

    assert [(t.log_index, t.value) for t in transfers] == [(2, ONE_TOKEN), (12, 2 * ONE_TOKEN)]
    assert all(t.tx_hash == TX_HASH for t in transfers)


def test_receipt_extraction_handles_missing_receipt():
    assert ReceiptTransferExtractor().extract(None) == []
    assert ReceiptTransferExtractor().extract({}) == []


def test_extract_transfers_prefers_structured():
    payload = {**structured_payload(), "logs": [transfer_log(ONE_TOKEN, transactionHash=TX_HASH, logIndex=99)]}

    transfers = extract_transfers(payload)

    assert [t.log_index for t in transfers] == [7]


def test_extract_transfers_falls_back_to_logs():
    payload = {"erc20Transfers": [], **raw_log_payload()}
    assert [t.log_index for t in extract_transfers(payload)] == [7]
    assert extract_transfers({"erc20Transfers": "nope"}) == []
