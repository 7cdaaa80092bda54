from unittest.mock import MagicMock, patch

from chainalert.tools.replay import main, signed_headers
from chainalert.webhooks.signature import SignatureMode, SignatureVerifier

BODY = b'{"event_type": "TEST"}'


def test_moralis_headers_verify():
    headers = signed_headers("moralis", BODY, "secret")

    SignatureVerifier("secret").verify(BODY, headers["x-signature"])


def test_moralis_custom_header():
    headers = signed_headers("moralis", BODY, "secret", signature_header="x-custom")
    assert "x-custom" in headers and "x-signature" not in headers


def test_tenderly_headers_verify_with_date():
    headers = signed_headers("tenderly", BODY, "key", date="Mon, 01 Jan 2024 00:00:00 GMT")

    assert headers["date"] == "Mon, 01 Jan 2024 00:00:00 GMT"
    SignatureVerifier("key", SignatureMode.BODY_AND_DATE).verify(
        BODY, headers["x-tenderly-signature"], headers["date"]
    )


def test_main_posts_payload(tmp_path):
    payload = tmp_path / "payload.json"
    payload.write_bytes(BODY)
    response = MagicMock(status_code=200, text='{"ok": true}', is_success=True)

    with patch("chainalert.tools.replay.httpx.post", return_value=response) as post:
        code = main(["tenderly", str(payload), "--secret", "key", "--url", "http://localhost:9/webhooks/tenderly"])

    assert code == 0
    args, kwargs = post.call_args
    assert args[0] == "http://localhost:9/webhooks/tenderly"
    assert kwargs["content"] == BODY
    assert "x-tenderly-signature" in kwargs["headers"]


def test_main_requires_secret(tmp_path, monkeypatch):
    payload = tmp_path / "payload.json"
    payload.write_bytes(BODY)
    monkeypatch.delenv("MORALIS_WEBHOOK_SECRET", raising=False)

    assert main(["moralis", str(payload)]) == 1


def test_main_missing_file(tmp_path):
    assert main(["moralis", str(tmp_path / "missing.json"), "--secret", "s"]) == 1
