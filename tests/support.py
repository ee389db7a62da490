"""Fakes shared by the test modules: signer, websocket and wire payloads."""
from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

BASE_URL = "http://streams.test"
V2_NETWORK = "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp"
PAY_TO = "PayTo1111111111111111111111111111111111111"

E = TypeVar("E")


class FakeSigner:
  def __init__(self, signature: str = "c2lnbmF0dXJl") -> None:
    self.signature = signature
    self.calls: List[Dict[str, Any]] = []

  async def sign(self, *, scheme: str, network: str, message: bytes) -> str:
    self.calls.append({"scheme": scheme, "network": network, "message": json.loads(message)})
    return self.signature


class FailingSigner:
  """A wallet that refuses to sign, as a locked or unreachable one would."""

  def __init__(self, error: Exception) -> None:
    self.error = error
    self.calls = 0

  async def sign(self, *, scheme: str, network: str, message: bytes) -> str:
    self.calls += 1
    raise self.error


class FakeSocket:
  """Stands in for a websockets client connection."""

  def __init__(self) -> None:
    self.sent: List[Dict[str, Any]] = []
    self.closed = False
    self._incoming: asyncio.Queue[Optional[str]] = asyncio.Queue()

  async def send(self, data: str) -> None:
    self.sent.append(json.loads(data))

  async def close(self) -> None:
    self.closed = True
    self._incoming.put_nowait(None)

  def feed(self, message: Any) -> None:
    self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

  def drop(self) -> None:
    self._incoming.put_nowait(None)

  def ops(self) -> List[str]:
    return [message["op"] for message in self.sent]

  def __aiter__(self) -> "FakeSocket":
    return self

  async def __anext__(self) -> str:
    item = await self._incoming.get()
    if item is None:
      raise StopAsyncIteration
    return item


class SocketFactory:
  def __init__(self) -> None:
    self.sockets: List[FakeSocket] = []
    self.urls: List[str] = []

  async def __call__(self, url: str) -> FakeSocket:
    socket = FakeSocket()
    self.urls.append(url)
    self.sockets.append(socket)
    return socket

  @property
  def last(self) -> FakeSocket:
    return self.sockets[-1]


def stream_schema(
  stream: str = "token-ticker",
  token: str = "lease-1",
  amount: str = "1000000",
  asset: str = "USDC",
) -> Dict[str, Any]:
  return {
    "protocol": "ws402",
    "version": "1",
    "websocketEndpoint": f"wss://streams.test/ws/{stream}?t={token}",
    "pricing": {"pricePerSecond": 0.001, "currency": "USDC", "estimatedDuration": 60},
    "paymentDetails": {
      "scheme": "exact",
      "network": V2_NETWORK,
      "asset": asset,
      "payTo": PAY_TO,
      "maxAmountRequired": amount,
      "maxTimeoutSeconds": 60,
    },
    "stream": {"id": stream, "title": stream.title(), "description": "live feed"},
  }


def v2_required(amount: str = "1000", url: str = f"{BASE_URL}/v2/schema/stream/token-ticker") -> Dict[str, Any]:
  return {
    "x402Version": 2,
    "resource": {"url": url, "description": "stream access", "mimeType": "application/json"},
    "accepts": [
      {
        "scheme": "exact",
        "network": V2_NETWORK,
        "amount": amount,
        "asset": "USDC",
        "payTo": PAY_TO,
        "maxTimeoutSeconds": 60,
        "extra": {"feePayer": "Fee1111111111111111111111111111111111111111"},
      }
    ],
  }


def v1_required(amount: str = "500", url: str = f"{BASE_URL}/v1/schema/stream/token-ticker") -> Dict[str, Any]:
  return {
    "x402Version": 1,
    "accepts": [
      {
        "scheme": "exact",
        "network": "solana",
        "maxAmountRequired": amount,
        "resource": url,
        "description": "stream access",
        "mimeType": "application/json",
        "payTo": PAY_TO,
        "maxTimeoutSeconds": 60,
        "asset": "USDC",
      }
    ],
  }


def b64_json(value: Any) -> str:
  return base64.b64encode(json.dumps(value).encode()).decode()


def decode_b64_json(value: str) -> Any:
  return json.loads(base64.b64decode(value))


async def next_event(queue: "asyncio.Queue[Any]", kind: Type[E], timeout: float = 1.0) -> E:
  """Pop events until one of `kind` arrives."""
  while True:
    event = await asyncio.wait_for(queue.get(), timeout)
    if isinstance(event, kind):
      return event


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
  loop = asyncio.get_running_loop()
  deadline = loop.time() + timeout
  while not predicate():
    if loop.time() > deadline:
      raise AssertionError("condition not met in time")
    await asyncio.sleep(0.005)
