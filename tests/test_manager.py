import asyncio

import httpx
import pytest

from slotwatch.config import ClientConfig, StreamSpec, X402Settings
from slotwatch.errors import AuthenticationError
from slotwatch.mints import MintRegistry, pair_key
from slotwatch.payments import PaymentAuthority
from slotwatch.pool_lookup import PoolLookupClient
from slotwatch.schemas import (
  ErrorFrame,
  RenewalReminderFrame,
  RenewedFrame,
  RenewHints,
  StatusEvent,
  StreamId,
  SwapQuoteEvent,
  TickerEvent,
)
from slotwatch.streams import (
  Connected,
  ControlReceived,
  Disconnected,
  DomainReceived,
  LeaseToken,
  LeaseUpdated,
  SchemaCharged,
  SessionError,
  SessionManager,
  SessionState,
  StatusReceived,
)
from slotwatch.watchlist import WatchlistCoordinator

from support import (
  BASE_URL,
  FailingSigner,
  FakeSigner,
  SocketFactory,
  b64_json,
  stream_schema,
  v2_required,
  wait_until,
)

REGISTRY = MintRegistry()
SOL = REGISTRY.sol
USDC = REGISTRY.usdc
JUP = REGISTRY.mint("JUP")
TICKER = StreamId.TOKEN_TICKER
QUOTES = StreamId.SWAP_QUOTES


def _schema_handler(overrides=None):
  """Serve a free schema for every stream unless `overrides` has a response for it."""
  overrides = overrides or {}

  async def handler(request):
    stream = request.url.path.rsplit("/", 1)[-1]
    if stream in overrides:
      result = overrides[stream](request)
      if asyncio.iscoroutine(result):
        result = await result
      return result
    return httpx.Response(200, json=stream_schema(stream=stream, token=f"lease-{stream}"))

  return handler


def _manager(
  streams=None,
  *,
  handler=None,
  lookup=None,
  pair_filters=(),
  factory=None,
  signer=None,
):
  streams = streams or [StreamSpec(stream_id=TICKER), StreamSpec(stream_id=QUOTES)]
  config = ClientConfig(
    x402=X402Settings(http_base=BASE_URL),
    streams=streams,
    pair_filters=list(pair_filters),
  )
  client = httpx.AsyncClient(transport=httpx.MockTransport(handler or _schema_handler()))
  authority = PaymentAuthority(signer or FakeSigner(), BASE_URL, http_client=client)
  coordinator = WatchlistCoordinator(REGISTRY, lookup)
  return SessionManager(
    config,
    authority,
    coordinator,
    REGISTRY,
    ws_connect=factory or SocketFactory(),
    clock=lambda: 1_000.0,
  )


def _ticker(base, quote, price, slot=1):
  return TickerEvent(slot=slot, base_mint=base, quote_mint=quote, price=price, dex="raydium")


# ---------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------


def test_disabled_streams_get_runtime_but_no_session():
  manager = _manager([StreamSpec(stream_id=TICKER), StreamSpec(stream_id=StreamId.POOL_RESERVES, enabled=False)])

  assert set(manager.sessions) == {TICKER}
  state = manager.runtime_state()
  assert state[StreamId.POOL_RESERVES]["enabled"] is False
  assert state[StreamId.POOL_RESERVES]["watched_accounts"] == 0


def test_pair_inputs_are_split_out_and_deferred():
  manager = _manager(
    [StreamSpec(stream_id=QUOTES, watch_accounts=["PoolA", "SOL/USDC"], watch_mints=[JUP])]
  )

  assert manager.sessions[QUOTES].watched_accounts == ["PoolA"]
  assert manager.coordinator.has_pending
  assert manager.runtime_state()[QUOTES]["watched_mints"] == 1


# ---------------------------------------------------------------------
# Ticker routing
# ---------------------------------------------------------------------


def test_usdc_quoted_ticker_passes_through():
  manager = _manager()
  updates = manager.route_ticker(_ticker(SOL, USDC, 150.0))

  assert [u.pair_key for u in updates] == [pair_key(SOL, USDC)]
  data = manager.store.get_price(pair_key(SOL, USDC))
  assert data.price == 150.0
  assert data.pair_label == "SOL/USDC"
  assert data.dex == "raydium"


def test_inverted_usdc_sol_ticker_sets_sol_price():
  manager = _manager()
  updates = manager.route_ticker(_ticker(USDC, SOL, 1 / 200))

  assert len(updates) == 1
  assert updates[0].pair_key == pair_key(SOL, USDC)
  assert updates[0].price == pytest.approx(200.0)


def test_sol_quoted_ticker_converts_to_usd():
  manager = _manager()
  assert manager.route_ticker(_ticker(JUP, SOL, 0.01)) == []

  manager.route_ticker(_ticker(USDC, SOL, 1 / 150))
  updates = manager.route_ticker(_ticker(JUP, SOL, 0.01))

  assert [u.pair_key for u in updates] == [pair_key(JUP, USDC)]
  assert updates[0].price == pytest.approx(1.5)
  assert updates[0].pair_label == "JUP/USDC"


def test_pair_filters_limit_tracked_pairs():
  manager = _manager(pair_filters=[pair_key(JUP, SOL)])
  manager.route_ticker(_ticker(USDC, SOL, 1 / 150))
  updates = manager.route_ticker(_ticker(JUP, SOL, 0.01))

  assert [u.pair_key for u in updates] == [pair_key(JUP, SOL)]
  assert manager.store.get_price(pair_key(SOL, USDC)) is None
  assert manager.route_ticker(_ticker(SOL, USDC, 150.0)) == []


def test_watch_mints_limit_tracked_pairs():
  manager = _manager([StreamSpec(stream_id=TICKER), StreamSpec(stream_id=QUOTES, watch_mints=[JUP])])

  assert manager.route_ticker(_ticker(SOL, USDC, 150.0)) == []
  assert len(manager.route_ticker(_ticker(JUP, USDC, 1.2))) == 1


def test_pause_stops_domain_routing():
  manager = _manager()
  swap = SwapQuoteEvent(
    slot=1,
    stream=QUOTES,
    dex="orca",
    pool="P",
    base_mint=SOL,
    quote_mint=USDC,
    base_amount="1",
    quote_amount="150",
    notional_usd=150.0,
  )

  manager.pause()
  assert manager.paused
  manager.handle_event(DomainReceived(TICKER, _ticker(SOL, USDC, 150.0)))
  manager.handle_event(DomainReceived(QUOTES, swap))
  assert manager.store.all_prices() == []
  assert manager.store.stats().total_swaps == 0

  manager.resume()
  manager.handle_event(DomainReceived(QUOTES, swap))
  assert manager.store.stats().total_swaps == 1
  assert manager.store.stats().total_notional_usd == 150.0


# ---------------------------------------------------------------------
# Session events
# ---------------------------------------------------------------------


def test_control_and_charge_events_feed_the_ledger():
  manager = _manager()

  manager.handle_event(SchemaCharged(TICKER, "1000000", "USDC"))
  manager.handle_event(
    ControlReceived(TICKER, RenewalReminderFrame(renew=RenewHints(http_price_hint="amount=500000 asset=USDC")))
  )
  assert manager.ledger.total_for(TICKER).amount == 1_000_000
  manager.handle_event(ControlReceived(TICKER, RenewedFrame(token="t2")))

  assert manager.ledger.total_for(TICKER).amount == 1_500_000
  assert manager.ledger.display_total(TICKER, 6) == "1.5 USDC"


def test_runtime_tracks_connection_status_and_errors():
  manager = _manager()
  status = StatusEvent(now="2026-01-01T00:00:00Z", grpc_connected=True)

  manager.handle_event(Connected(TICKER))
  manager.handle_event(StatusReceived(TICKER, status))
  state = manager.runtime_state()[TICKER]
  assert state["connected"] is True
  assert state["status"] == status

  manager.handle_event(ControlReceived(TICKER, ErrorFrame(message="quota")))
  assert manager.runtime_state()[TICKER]["last_error"] == "quota"

  manager.handle_event(SessionError(TICKER, RuntimeError("socket dropped")))
  manager.handle_event(Disconnected(TICKER, "socket dropped"))
  state = manager.runtime_state()[TICKER]
  assert state["connected"] is False
  assert state["last_error"] == "socket dropped"


def test_lease_updates_reach_the_coordinator():
  manager = _manager()
  manager.handle_event(LeaseUpdated(TICKER, LeaseToken("lease-x")))
  assert manager.coordinator.lease_token == "lease-x"


# ---------------------------------------------------------------------
# Charge previews
# ---------------------------------------------------------------------


def _priced(amount="1000000", asset="USDC"):
  def respond(request):
    body = v2_required(amount=amount)
    body["accepts"][0]["asset"] = asset
    return httpx.Response(402, headers={"PAYMENT-REQUIRED": b64_json(body)})

  return respond


@pytest.mark.asyncio
async def test_preview_charges_totals_matching_assets():
  manager = _manager(handler=_schema_handler({"token-ticker": _priced(), "swap-quotes": _priced()}))
  summary = await manager.preview_charges()

  assert [row.display for row in summary.rows] == ["1 USDC", "1 USDC"]
  assert summary.total == "2 USDC"


@pytest.mark.asyncio
async def test_preview_charges_unknown_when_a_stream_fails():
  manager = _manager(
    handler=_schema_handler({"token-ticker": _priced(), "swap-quotes": lambda request: httpx.Response(500)})
  )
  summary = await manager.preview_charges()

  assert [row.display for row in summary.rows] == ["1 USDC", "unknown"]
  assert summary.total == "unknown"


@pytest.mark.asyncio
async def test_preview_charges_mixed_assets():
  manager = _manager(
    handler=_schema_handler({"token-ticker": _priced(), "swap-quotes": _priced("5", "SOL")})
  )
  summary = await manager.preview_charges()

  assert summary.rows[1].display == "0.000005 SOL"
  assert summary.total == "mixed"


# ---------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------


@pytest.mark.asyncio
async def test_one_failing_stream_does_not_stop_the_others():
  factory = SocketFactory()
  manager = _manager(
    handler=_schema_handler({"swap-quotes": lambda request: httpx.Response(500)}),
    factory=factory,
  )

  failures = await manager.start()

  assert set(failures) == {QUOTES}
  assert isinstance(failures[QUOTES], AuthenticationError)
  await wait_until(lambda: manager.runtime_state()[TICKER]["connected"])
  assert manager.runtime_state()[QUOTES]["connected"] is False
  assert manager.runtime_state()[QUOTES]["last_error"]
  assert manager.coordinator.lease_token == "lease-token-ticker"

  factory.last.feed({"type": "ticker", "slot": 9, "baseMint": SOL, "quoteMint": USDC, "price": 151.0})
  await wait_until(lambda: manager.store.get_price(pair_key(SOL, USDC)) is not None)

  await manager.stop()
  assert factory.last.closed
  assert manager.runtime_state()[TICKER]["connected"] is False


@pytest.mark.asyncio
async def test_signer_failure_on_one_stream_does_not_abort_start():
  def paid(request):
    return httpx.Response(402, headers={"PAYMENT-REQUIRED": b64_json(v2_required())})

  factory = SocketFactory()
  manager = _manager(
    handler=_schema_handler({"swap-quotes": paid}),
    factory=factory,
    signer=FailingSigner(RuntimeError("wallet locked")),
  )

  failures = await manager.start()

  assert set(failures) == {QUOTES}
  assert isinstance(failures[QUOTES], AuthenticationError)
  assert "wallet locked" in manager.runtime_state()[QUOTES]["last_error"]
  assert manager.sessions[QUOTES].state == SessionState.CLOSED
  await wait_until(lambda: manager.runtime_state()[TICKER]["connected"])
  await manager.stop()


@pytest.mark.asyncio
async def test_hung_renewal_does_not_stall_other_streams():
  gate = asyncio.Event()

  async def quotes(request):
    if request.method == "POST":
      await gate.wait()
      return httpx.Response(200, json={"token": "lease-renewed", "expiresAt": "2026-01-01T00:01:00Z", "sliceSeconds": 60})
    return httpx.Response(200, json=stream_schema(stream="swap-quotes", token="lease-swap-quotes"))

  factory = SocketFactory()
  manager = _manager(handler=_schema_handler({"swap-quotes": quotes}), factory=factory)
  assert await manager.start() == {}
  sockets = {url.split("/ws/")[1].split("?")[0]: socket for url, socket in zip(factory.urls, factory.sockets)}

  sockets["swap-quotes"].feed({"op": "renewal_reminder"})
  await wait_until(lambda: manager.sessions[QUOTES].state == SessionState.RENEWING)

  sockets["token-ticker"].feed({"type": "ticker", "slot": 3, "baseMint": SOL, "quoteMint": USDC, "price": 149.0})
  await wait_until(lambda: manager.store.get_price(pair_key(SOL, USDC)) is not None)
  assert manager.sessions[QUOTES].state == SessionState.RENEWING

  gate.set()
  await wait_until(lambda: manager.sessions[QUOTES].state == SessionState.OPEN)
  assert manager.sessions[QUOTES].lease.value == "lease-renewed"
  await manager.stop()


@pytest.mark.asyncio
async def test_deferred_pairs_are_pushed_after_start():
  lookups = []

  def lookup_handler(request):
    lookups.append(request)
    return httpx.Response(200, json={"pools": [{"pool": "PoolSOL"}]})

  lookup = PoolLookupClient(BASE_URL, http_client=httpx.AsyncClient(transport=httpx.MockTransport(lookup_handler)))
  factory = SocketFactory()
  manager = _manager(
    [StreamSpec(stream_id=QUOTES, watch_accounts=["SOL/USDC"])],
    lookup=lookup,
    factory=factory,
  )

  assert await manager.start() == {}
  socket = factory.last
  await wait_until(lambda: "addAccounts" in socket.ops())

  assert socket.sent[-1] == {"op": "addAccounts", "accounts": ["PoolSOL"]}
  assert lookups[0].url.params["t"] == "lease-swap-quotes"
  assert manager.sessions[QUOTES].watched_accounts == ["PoolSOL"]

  added = await manager.add_swap_pools(["PoolSOL", "PoolB"])
  assert added == ["PoolB"]
  removed = await manager.remove_swap_pools(["PoolSOL"])
  assert removed == ["PoolSOL"]

  assert await manager.add_mints(["jup"]) == [JUP]
  assert manager.route_ticker(_ticker(SOL, USDC, 150.0)) == []
  assert await manager.remove_mints([JUP]) == [JUP]
  assert len(manager.route_ticker(_ticker(SOL, USDC, 150.0))) == 1

  await manager.stop()
