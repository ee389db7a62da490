"""
x402 / ws402 wire models.

Two protocol versions share the same concepts but not the same shapes:

  v1: flat requirements, amount in `maxAmountRequired`, free-form network
  v2: resource descriptor on the envelope, amount in `amount`, CAIP-2 network

Decoding tries each known variant in a fixed order and returns None when
nothing matches, so callers can drop unknown shapes instead of failing.
"""
from __future__ import annotations

import base64
import binascii
import json
from typing import Any, ClassVar, Dict, List, Literal, Mapping, Optional, Tuple, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr, ValidationError

from ..schemas import StreamId

Number = Union[StrictInt, StrictFloat]
SchemaVersion = Literal["v1", "v2"]

PAYMENT_REQUIRED_HEADER = "PAYMENT-REQUIRED"
PAYMENT_HEADER_V1 = "X-PAYMENT"
PAYMENT_HEADER_V2 = "PAYMENT-SIGNATURE"


class WireModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


# ---------------------------------------------------------------------
# Payment requirements
# ---------------------------------------------------------------------


class ResourceInfo(WireModel):
    url: StrictStr
    description: StrictStr
    mime_type: StrictStr = Field(alias="mimeType")


class PaymentRequirementsV1(WireModel):
    version: ClassVar[int] = 1

    scheme: StrictStr
    network: StrictStr
    max_amount_required: StrictStr = Field(alias="maxAmountRequired")
    resource: StrictStr
    description: StrictStr = ""
    mime_type: StrictStr = Field("", alias="mimeType")
    output_schema: Dict[str, Any] = Field(default_factory=dict, alias="outputSchema")
    pay_to: StrictStr = Field(alias="payTo")
    max_timeout_seconds: Number = Field(alias="maxTimeoutSeconds")
    asset: StrictStr
    extra: Dict[str, Any] = Field(default_factory=dict)

    @property
    def amount_raw(self) -> str:
        return self.max_amount_required


class PaymentRequirementsV2(WireModel):
    version: ClassVar[int] = 2

    scheme: StrictStr
    network: StrictStr
    amount: StrictStr
    asset: StrictStr
    pay_to: StrictStr = Field(alias="payTo")
    max_timeout_seconds: Number = Field(alias="maxTimeoutSeconds")
    extra: Dict[str, Any] = Field(default_factory=dict)

    @property
    def amount_raw(self) -> str:
        return self.amount


PaymentRequirements = Union[PaymentRequirementsV1, PaymentRequirementsV2]


class PaymentRequiredV1(WireModel):
    version: ClassVar[int] = 1

    x402_version: Literal[1] = Field(alias="x402Version")
    accepts: List[PaymentRequirementsV1]
    error: Optional[StrictStr] = None


class PaymentRequiredV2(WireModel):
    version: ClassVar[int] = 2

    x402_version: Literal[2] = Field(alias="x402Version")
    resource: ResourceInfo
    accepts: List[PaymentRequirementsV2]
    extensions: Optional[Dict[str, Any]] = None
    error: Optional[StrictStr] = None


PaymentRequired = Union[PaymentRequiredV1, PaymentRequiredV2]


# ---------------------------------------------------------------------
# Payment payloads
# ---------------------------------------------------------------------


class PaymentPayloadV1(WireModel):
    version: ClassVar[int] = 1

    x402_version: Literal[1] = Field(alias="x402Version")
    scheme: StrictStr
    network: StrictStr
    payload: Dict[str, Any]


class PaymentPayloadV2(WireModel):
    version: ClassVar[int] = 2

    x402_version: Literal[2] = Field(alias="x402Version")
    resource: ResourceInfo
    accepted: PaymentRequirementsV2
    payload: Dict[str, Any]
    extensions: Optional[Dict[str, Any]] = None


PaymentPayload = Union[PaymentPayloadV1, PaymentPayloadV2]


# ---------------------------------------------------------------------
# ws402 stream schema
# ---------------------------------------------------------------------


class StreamPricing(WireModel):
    price_per_second: Number = Field(alias="pricePerSecond")
    currency: StrictStr
    estimated_duration: Number = Field(alias="estimatedDuration")


class StreamPaymentDetails(WireModel):
    scheme: Literal["exact"]
    network: StrictStr
    asset: StrictStr
    pay_to: StrictStr = Field(alias="payTo")
    max_amount_required: StrictStr = Field(alias="maxAmountRequired")
    max_timeout_seconds: Number = Field(alias="maxTimeoutSeconds")


class StreamInfo(WireModel):
    id: StreamId
    title: StrictStr
    description: StrictStr


class Ws402StreamSchema(WireModel):
    protocol: Literal["ws402"]
    version: Literal["1"]
    websocket_endpoint: StrictStr = Field(alias="websocketEndpoint")
    pricing: StreamPricing
    payment_details: StreamPaymentDetails = Field(alias="paymentDetails")
    stream: StreamInfo


class RenewResponse(WireModel):
    token: StrictStr
    expires_at: StrictStr = Field(alias="expiresAt")
    slice_seconds: Number = Field(alias="sliceSeconds")


# ---------------------------------------------------------------------
# Tagged-variant decoding
# ---------------------------------------------------------------------

M = TypeVar("M", bound=BaseModel)


def _first_match(value: Any, variants: Tuple[Type[M], ...]) -> Optional[M]:
    for variant in variants:
        try:
            return variant.model_validate(value)
        except ValidationError:
            continue
    return None


def decode_payment_required(value: Any) -> Optional[PaymentRequired]:
    return _first_match(value, (PaymentRequiredV1, PaymentRequiredV2))


def decode_payment_requirements(value: Any) -> Optional[PaymentRequirements]:
    return _first_match(value, (PaymentRequirementsV1, PaymentRequirementsV2))


def decode_payment_payload(value: Any) -> Optional[PaymentPayload]:
    return _first_match(value, (PaymentPayloadV1, PaymentPayloadV2))


def decode_stream_schema(value: Any) -> Optional[Ws402StreamSchema]:
    return _first_match(value, (Ws402StreamSchema,))


def decode_renew_response(value: Any) -> Optional[RenewResponse]:
    return _first_match(value, (RenewResponse,))


def _decode_b64_json(value: str) -> Any:
    try:
        return json.loads(base64.b64decode(value, validate=False))
    except (binascii.Error, ValueError):
        return None


def decode_payment_challenge(headers: Mapping[str, str], body: Any) -> Optional[PaymentRequired]:
    """Decode a 402 challenge from the v2 header, falling back to the body."""
    header = headers.get(PAYMENT_REQUIRED_HEADER) or headers.get(PAYMENT_REQUIRED_HEADER.lower())
    if header:
        decoded = decode_payment_required(_decode_b64_json(header))
        if decoded is not None:
            return decoded
    return decode_payment_required(body)


def response_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def encode_payment_header(payload: PaymentPayload) -> Tuple[str, str]:
    encoded = base64.b64encode(json.dumps(payload.to_wire(), separators=(",", ":")).encode()).decode()
    name = PAYMENT_HEADER_V2 if payload.version == 2 else PAYMENT_HEADER_V1
    return name, encoded


# ---------------------------------------------------------------------
# Networks & URLs
# ---------------------------------------------------------------------


def is_network_v2(value: str) -> bool:
    idx = value.find(":")
    return 0 < idx < len(value) - 1


def parse_schema_version(schema_path: str) -> SchemaVersion:
    path = schema_path
    if schema_path.startswith(("http://", "https://")):
        try:
            path = httpx.URL(schema_path).path
        except httpx.InvalidURL:
            path = schema_path
    if path.startswith("/v2/"):
        return "v2"
    return "v1"


def build_schema_path(stream_id: StreamId, version: SchemaVersion) -> str:
    return f"/{version}/schema/stream/{stream_id.value}"


def build_renew_url(http_base: str, stream_id: StreamId, version: SchemaVersion) -> str:
    return str(httpx.URL(http_base).join(f"/{version}/renew/stream/{stream_id.value}"))


def resolve_url(http_base: str, path: str) -> str:
    return str(httpx.URL(http_base).join(path))


def token_from_ws_url(ws_url: str) -> str:
    try:
        return httpx.URL(ws_url).params.get("t") or ""
    except httpx.InvalidURL:
        return ""


__all__ = [
    "PaymentPayload",
    "PaymentPayloadV1",
    "PaymentPayloadV2",
    "PaymentRequired",
    "PaymentRequiredV1",
    "PaymentRequiredV2",
    "PaymentRequirements",
    "PaymentRequirementsV1",
    "PaymentRequirementsV2",
    "RenewResponse",
    "ResourceInfo",
    "SchemaVersion",
    "Ws402StreamSchema",
    "build_renew_url",
    "build_schema_path",
    "decode_payment_challenge",
    "decode_payment_payload",
    "decode_payment_required",
    "decode_payment_requirements",
    "decode_renew_response",
    "decode_stream_schema",
    "encode_payment_header",
    "is_network_v2",
    "parse_schema_version",
    "resolve_url",
    "response_json",
    "token_from_ws_url",
]
