import json

import pytest

from slotwatch.errors import ProtocolShapeError
from slotwatch.payments.protocol import (
  PaymentPayloadV1,
  PaymentPayloadV2,
  PaymentRequiredV1,
  PaymentRequiredV2,
  PaymentRequirementsV1,
  PaymentRequirementsV2,
  build_renew_url,
  build_schema_path,
  decode_payment_challenge,
  decode_payment_payload,
  decode_payment_required,
  decode_payment_requirements,
  decode_renew_response,
  decode_stream_schema,
  encode_payment_header,
  is_network_v2,
  parse_schema_version,
  token_from_ws_url,
)
from slotwatch.schemas import (
  ControlOp,
  ErrorFrame,
  HelloFrame,
  PaymentRequiredFrame,
  PoolCreatedEvent,
  PoolReservesEvent,
  RenewalReminderFrame,
  RenewedFrame,
  StatusEvent,
  StreamId,
  SwapQuoteEvent,
  TickerEvent,
  decode_frame,
)

from support import BASE_URL, V2_NETWORK, b64_json, decode_b64_json, stream_schema, v1_required, v2_required


# ---------------------------------------------------------------------
# x402 envelopes
# ---------------------------------------------------------------------


def test_decode_v1_required():
  body = v1_required(amount="750")
  decoded = decode_payment_required(body)

  assert isinstance(decoded, PaymentRequiredV1)
  assert decoded.version == 1
  assert decoded.accepts[0].amount_raw == "750"
  assert decoded.to_wire() == body


def test_decode_v2_required():
  body = v2_required(amount="1200")
  decoded = decode_payment_required(body)

  assert isinstance(decoded, PaymentRequiredV2)
  assert decoded.resource.url.endswith("/v2/schema/stream/token-ticker")
  assert decoded.accepts[0].amount_raw == "1200"
  assert decoded.accepts[0].extra["feePayer"].startswith("Fee")
  assert decoded.to_wire() == body


@pytest.mark.parametrize(
  "body",
  [
    None,
    "nope",
    {"x402Version": 3, "accepts": []},
    {"x402Version": 2, "accepts": []},
    {"x402Version": 1, "accepts": [{"scheme": "exact"}]},
  ],
)
def test_decode_required_rejects_unknown_shapes(body):
  assert decode_payment_required(body) is None


def test_decode_requirements_picks_variant_by_shape():
  v1 = decode_payment_requirements(v1_required()["accepts"][0])
  v2 = decode_payment_requirements(v2_required()["accepts"][0])

  assert isinstance(v1, PaymentRequirementsV1)
  assert isinstance(v2, PaymentRequirementsV2)
  assert decode_payment_requirements({"scheme": "exact"}) is None


def test_decode_payment_payload_variants():
  requirement = v2_required()["accepts"][0]
  v2 = decode_payment_payload(
    {
      "x402Version": 2,
      "resource": v2_required()["resource"],
      "accepted": requirement,
      "payload": {"transaction": "abc"},
    }
  )
  v1 = decode_payment_payload(
    {"x402Version": 1, "scheme": "exact", "network": "solana", "payload": {"transaction": "abc"}}
  )

  assert isinstance(v2, PaymentPayloadV2)
  assert isinstance(v1, PaymentPayloadV1)
  assert decode_payment_payload({"x402Version": 1}) is None


def test_challenge_header_wins_over_body():
  header_body = v2_required(amount="42")
  challenge = decode_payment_challenge({"PAYMENT-REQUIRED": b64_json(header_body)}, v1_required())

  assert isinstance(challenge, PaymentRequiredV2)
  assert challenge.accepts[0].amount == "42"


def test_challenge_falls_back_to_body():
  challenge = decode_payment_challenge({"PAYMENT-REQUIRED": "!!not-base64!!"}, v1_required(amount="9"))
  assert isinstance(challenge, PaymentRequiredV1)
  assert challenge.accepts[0].max_amount_required == "9"

  assert decode_payment_challenge({}, {"error": "nope"}) is None


def test_encode_payment_header_names_by_version():
  v1 = PaymentPayloadV1.model_validate(
    {"x402Version": 1, "scheme": "exact", "network": "solana", "payload": {"transaction": "t"}}
  )
  name, value = encode_payment_header(v1)
  assert name == "X-PAYMENT"
  assert decode_b64_json(value)["payload"] == {"transaction": "t"}

  v2 = PaymentPayloadV2.model_validate(
    {
      "x402Version": 2,
      "resource": v2_required()["resource"],
      "accepted": v2_required()["accepts"][0],
      "payload": {"transaction": "t"},
    }
  )
  name, value = encode_payment_header(v2)
  assert name == "PAYMENT-SIGNATURE"
  assert decode_b64_json(value)["accepted"]["network"] == V2_NETWORK


# ---------------------------------------------------------------------
# ws402 schema and renewal bodies
# ---------------------------------------------------------------------


def test_decode_stream_schema():
  schema = decode_stream_schema(stream_schema(stream="swap-quotes", token="abc"))

  assert schema is not None
  assert schema.stream.id == StreamId.SWAP_QUOTES
  assert schema.payment_details.max_amount_required == "1000000"
  assert token_from_ws_url(schema.websocket_endpoint) == "abc"


def test_decode_stream_schema_rejects_other_protocols():
  body = stream_schema()
  body["protocol"] = "ws401"
  assert decode_stream_schema(body) is None


def test_decode_renew_response():
  renewed = decode_renew_response({"token": "t2", "expiresAt": "2026-01-01T00:00:00Z", "sliceSeconds": 60})
  assert renewed is not None
  assert renewed.token == "t2"
  assert renewed.slice_seconds == 60
  assert decode_renew_response({"token": "t2"}) is None


# ---------------------------------------------------------------------
# Networks and URLs
# ---------------------------------------------------------------------


@pytest.mark.parametrize(
  "network, expected",
  [(V2_NETWORK, True), ("solana", False), (":abc", False), ("solana:", False)],
)
def test_is_network_v2(network, expected):
  assert is_network_v2(network) is expected


@pytest.mark.parametrize(
  "path, expected",
  [
    ("/v2/schema/stream/token-ticker", "v2"),
    ("/v1/schema/stream/token-ticker", "v1"),
    ("/schema/stream/token-ticker", "v1"),
    ("https://host.test/v2/schema/stream/swap-quotes", "v2"),
  ],
)
def test_parse_schema_version(path, expected):
  assert parse_schema_version(path) == expected


def test_build_urls():
  assert build_schema_path(StreamId.POOL_RESERVES, "v1") == "/v1/schema/stream/pool-reserves"
  assert build_renew_url(BASE_URL, StreamId.TOKEN_TICKER, "v2") == f"{BASE_URL}/v2/renew/stream/token-ticker"


@pytest.mark.parametrize(
  "url, token",
  [
    ("wss://h/ws/token-ticker?t=lease-9", "lease-9"),
    ("wss://h/ws/token-ticker?x=1&t=a%2Bb", "a+b"),
    ("wss://h/ws/token-ticker", ""),
  ],
)
def test_token_from_ws_url(url, token):
  assert token_from_ws_url(url) == token


# ---------------------------------------------------------------------
# Frame classification
# ---------------------------------------------------------------------


def test_control_frames_decode_first():
  hello = decode_frame('{"op": "hello", "clientId": "c1", "expiresAt": "soon", "sliceSeconds": 30}')
  assert isinstance(hello, HelloFrame)
  assert hello.op == ControlOp.HELLO
  assert hello.slice_seconds == 30

  reminder = decode_frame(
    json.dumps({"op": "renewal_reminder", "msUntilExpiry": 5000, "renew": {"http": {"priceHint": "amount=10;asset=USDC"}}})
  )
  assert isinstance(reminder, RenewalReminderFrame)
  assert reminder.ms_until_expiry == 5000
  assert reminder.renew.price_hint == "amount=10;asset=USDC"

  assert isinstance(decode_frame('{"op": "payment_required", "reason": "expired"}'), PaymentRequiredFrame)
  renewed = decode_frame('{"op": "renewed", "token": "t2", "method": "inband"}')
  assert isinstance(renewed, RenewedFrame)
  assert renewed.token == "t2"
  error = decode_frame('{"op": "error", "message": "bad"}')
  assert isinstance(error, ErrorFrame)
  assert error.message == "bad"


def test_status_frame():
  status = decode_frame(
    '{"type": "status", "now": "2026-01-01T00:00:00Z", "grpcConnected": true, "watchedAccounts": 3}'
  )
  assert isinstance(status, StatusEvent)
  assert status.grpc_connected is True
  assert status.watched_accounts == 3
  assert status.node_healthy is False


def test_domain_frames():
  ticker = decode_frame('{"type": "ticker", "slot": 10, "baseMint": "A", "quoteMint": "B", "price": 1.5}')
  assert isinstance(ticker, TickerEvent)
  assert ticker.price == 1.5

  swap = decode_frame(
    '{"type": "swap-quote", "stream": "swap-alerts", "slot": 11, "pool": "P", "baseMint": "A",'
    ' "quoteMint": "B", "baseAmount": "1", "quoteAmount": "2", "notionalUsd": 50000}'
  )
  assert isinstance(swap, SwapQuoteEvent)
  assert swap.is_alert
  assert swap.notional_usd == 50000.0

  created = decode_frame('{"type": "pool-created", "slot": 1, "pool": "P", "baseMint": "A", "quoteMint": "B"}')
  assert isinstance(created, PoolCreatedEvent)

  reserves = decode_frame(
    '{"type": "pool-reserves", "slot": 2, "pool": "P", "baseMint": "A", "quoteMint": "B",'
    ' "baseAmount": "10", "quoteAmount": "20"}'
  )
  assert isinstance(reserves, PoolReservesEvent)
  assert reserves.base_amount == "10"


@pytest.mark.parametrize(
  "raw",
  [
    "not json",
    "[1, 2]",
    '{"type": "whale"}',
    '{"op": "unknown-op"}',
    '{"type": "status"}',
    b"\xff\xfe",
  ],
)
def test_unrecognized_frames_return_none(raw):
  assert decode_frame(raw) is None


def test_bytes_and_fragment_lists_decode():
  raw = b'{"type": "ticker", "slot": 1, "baseMint": "A", "quoteMint": "B", "price": 2}'
  assert isinstance(decode_frame(raw), TickerEvent)
  assert isinstance(decode_frame([raw[:10], raw[10:]]), TickerEvent)


@pytest.mark.parametrize(
  "raw",
  [
    '{"type": "ticker", "slot": 1, "baseMint": "A", "quoteMint": "B"}',
    '{"type": "ticker", "slot": -1, "baseMint": "A", "quoteMint": "B", "price": 1}',
    '{"type": "swap-quote", "stream": "token-ticker", "slot": 1, "pool": "P", "baseMint": "A",'
    ' "quoteMint": "B", "baseAmount": "1", "quoteAmount": "2"}',
  ],
)
def test_malformed_domain_frames_raise(raw):
  with pytest.raises(ProtocolShapeError):
    decode_frame(raw)
