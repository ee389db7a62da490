"""
Payment authority: decides when and how to sign x402 payments.

Signing itself is delegated to an external `Signer`; this module only builds
the message, wraps the result in a version-matched payload and drives the
402 challenge/retry cycle over httpx.
"""
from __future__ import annotations

import json
import logging
import os
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import httpx

from ..amounts import parse_amount
from ..errors import AuthenticationError, PaymentRejected, SigningError, TransientNetworkError
from ..schemas import StreamId
from .protocol import (
    PaymentPayload,
    PaymentPayloadV1,
    PaymentPayloadV2,
    PaymentRequired,
    PaymentRequirements,
    PaymentRequirementsV2,
    ResourceInfo,
    Ws402StreamSchema,
    decode_payment_challenge,
    decode_stream_schema,
    encode_payment_header,
    is_network_v2,
    resolve_url,
    response_json,
    token_from_ws_url,
)

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = float(os.getenv("X402_HTTP_TIMEOUT", "10.0"))


class Signer(Protocol):
    """External signing capability (key custody lives outside this package)."""

    async def sign(self, *, scheme: str, network: str, message: bytes) -> str:
        ...


@dataclass(slots=True, frozen=True)
class ChargePreview:
    amount: Optional[int] = None
    asset: Optional[str] = None


@dataclass(slots=True)
class PaidResponse:
    response: httpx.Response
    requirement: Optional[PaymentRequirements] = None
    payload: Optional[PaymentPayload] = None


@dataclass(slots=True, frozen=True)
class StreamGrant:
    ws_url: str
    token: str
    stream_id: StreamId
    schema: Ws402StreamSchema
    charge: Optional[PaymentRequirements] = None


class PaymentAuthority:
    def __init__(
        self,
        signer: Signer,
        http_base: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.signer = signer
        self.http_base = http_base
        self._client = http_client or httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)
        self._owns_client = http_client is None
        self._clock = clock

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -----------------------------------------------------------------
    # Previews
    # -----------------------------------------------------------------

    async def preview_charge(self, schema_path: str) -> ChargePreview:
        """Ask the schema endpoint for its price without paying. Nothing is signed.

        Advisory only: shape problems produce an empty preview instead of an
        error. Statuses other than 2xx/402 raise TransientNetworkError.
        """
        url = resolve_url(self.http_base, schema_path)
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"charge preview failed for {url}: {exc}") from exc

        if response.is_success:
            schema = decode_stream_schema(response_json(response))
            if schema is None:
                logger.debug("Charge preview for %s: schema shape invalid", url)
                return ChargePreview()
            return self._preview_from(schema.payment_details.max_amount_required, schema.payment_details.asset)

        if response.status_code == 402:
            required = decode_payment_challenge(response.headers, response_json(response))
            if required is None or not required.accepts:
                logger.debug("Charge preview for %s: undecodable challenge", url)
                return ChargePreview()
            requirement = required.accepts[0]
            return self._preview_from(requirement.amount_raw, requirement.asset)

        raise TransientNetworkError(f"x402 schema failed: {response.status_code}")

    @staticmethod
    def _preview_from(amount_raw: str, asset: str) -> ChargePreview:
        amount = parse_amount(amount_raw)
        if amount is None:
            return ChargePreview()
        return ChargePreview(amount=amount, asset=asset)

    # -----------------------------------------------------------------
    # Signing
    # -----------------------------------------------------------------

    async def build_payload(
        self,
        requirement: PaymentRequirements,
        *,
        resource: Optional[ResourceInfo] = None,
    ) -> PaymentPayload:
        if requirement.version == 2:
            if not is_network_v2(requirement.network):
                raise SigningError(f"invalid payment network: {requirement.network}")
            if resource is None:
                raise SigningError("v2 payment requires a resource descriptor")
        elif not requirement.network.strip():
            raise SigningError("payment network is empty")

        if parse_amount(requirement.amount_raw) is None:
            raise SigningError(f"payment amount is not an integer: {requirement.amount_raw!r}")

        authorization = self._authorization(requirement, resource)
        message = json.dumps(authorization, sort_keys=True, separators=(",", ":")).encode()
        try:
            signature = await self.signer.sign(
                scheme=requirement.scheme,
                network=requirement.network,
                message=message,
            )
        except Exception as exc:
            raise SigningError(f"signer failed: {exc}") from exc
        if not signature:
            raise SigningError("signer returned an empty signature")
        body = {"signature": signature, "authorization": authorization}

        if isinstance(requirement, PaymentRequirementsV2):
            payload: PaymentPayload = PaymentPayloadV2(
                x402Version=2,
                resource=resource,
                accepted=requirement,
                payload=body,
            )
        else:
            payload = PaymentPayloadV1(
                x402Version=1,
                scheme=requirement.scheme,
                network=requirement.network,
                payload=body,
            )
        self.ensure_version_match(requirement, payload)
        return payload

    async def sign_challenge(self, required: PaymentRequired) -> Tuple[PaymentRequirements, PaymentPayload]:
        if not required.accepts:
            raise SigningError("payment-required missing accepts")
        requirement = required.accepts[0]
        resource = getattr(required, "resource", None) if required.version == 2 else None
        payload = await self.build_payload(requirement, resource=resource)
        return requirement, payload

    @staticmethod
    def ensure_version_match(requirement: PaymentRequirements, payload: PaymentPayload) -> None:
        if payload.version != requirement.version:
            raise SigningError(
                f"payment payload version {payload.version} does not match requirement version {requirement.version}"
            )

    def _authorization(self, requirement: PaymentRequirements, resource: Optional[ResourceInfo]) -> Dict[str, Any]:
        resource_url = resource.url if resource is not None else getattr(requirement, "resource", "")
        return {
            "x402Version": requirement.version,
            "scheme": requirement.scheme,
            "network": requirement.network,
            "asset": requirement.asset,
            "payTo": requirement.pay_to,
            "amount": requirement.amount_raw,
            "resource": resource_url,
            "nonce": secrets.token_hex(16),
            "validBefore": int(self._clock()) + int(requirement.max_timeout_seconds),
        }

    # -----------------------------------------------------------------
    # HTTP
    # -----------------------------------------------------------------

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Plain, unpaid request on the shared client."""
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"{method} {url} failed: {exc}") from exc

    async def fetch_with_payment(self, method: str, url: str, **kwargs: Any) -> PaidResponse:
        """Send a request, paying and retrying once if the server answers 402."""
        headers = dict(kwargs.pop("headers", None) or {})
        response = await self.request(method, url, headers=headers, **kwargs)
        if response.status_code != 402:
            return PaidResponse(response)

        required = decode_payment_challenge(response.headers, response_json(response))
        if required is None or not required.accepts:
            raise AuthenticationError(f"undecodable payment challenge from {url}")
        requirement, payload = await self.sign_challenge(required)

        header_name, header_value = encode_payment_header(payload)
        headers[header_name] = header_value
        logger.debug("Retrying %s %s with %s payment", method, url, requirement.network)
        retry = await self.request(method, url, headers=headers, **kwargs)
        if retry.status_code == 402:
            raise PaymentRejected(f"payment rejected by {url}")
        return PaidResponse(retry, requirement, payload)

    async def request_stream_schema(self, schema_path: str, expected: StreamId) -> StreamGrant:
        url = resolve_url(self.http_base, schema_path)
        try:
            paid = await self.fetch_with_payment("GET", url)
        except TransientNetworkError as exc:
            raise AuthenticationError(str(exc)) from exc
        except SigningError as exc:
            raise AuthenticationError(f"x402 schema payment failed: {exc}") from exc

        response = paid.response
        if not response.is_success:
            raise AuthenticationError(f"x402 schema failed: {response.status_code}")
        schema = decode_stream_schema(response_json(response))
        if schema is None:
            raise AuthenticationError("x402 schema response shape invalid")
        token = token_from_ws_url(schema.websocket_endpoint)
        if not token:
            raise AuthenticationError("x402 schema missing token")
        if schema.stream.id != expected:
            raise AuthenticationError(
                f"schema stream mismatch: expected {expected.value} got {schema.stream.id.value}"
            )
        return StreamGrant(
            ws_url=schema.websocket_endpoint,
            token=token,
            stream_id=schema.stream.id,
            schema=schema,
            charge=paid.requirement,
        )


__all__ = [
    "ChargePreview",
    "PaidResponse",
    "PaymentAuthority",
    "Signer",
    "StreamGrant",
]
