from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional

from ..config import RenewMethod
from ..errors import ConfigurationError, ProtocolShapeError, TransientNetworkError
from ..payments.authority import PaymentAuthority
from ..payments.protocol import (
    SchemaVersion,
    decode_payment_challenge,
    decode_renew_response,
    response_json,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RenewalOutcome:
    """Result of one renewal round trip.

    `token` is set when the new lease is known immediately (HTTP renewal).
    In-band renewal leaves it None; the lease arrives later in a `renewed` frame.
    """

    message: Dict[str, Any]
    token: Optional[str] = None
    expires_at: Optional[str] = None
    slice_seconds: Optional[int] = None


class RenewalStrategy(abc.ABC):
    method: ClassVar[RenewMethod]

    def __init__(self, authority: PaymentAuthority, renew_url: str) -> None:
        self.authority = authority
        self.renew_url = renew_url

    @abc.abstractmethod
    async def renew(self, token: str) -> RenewalOutcome:
        raise NotImplementedError


class HttpRenewal(RenewalStrategy):
    """POST the lease token with payment attached; the response is the new lease."""

    method = "http"

    async def renew(self, token: str) -> RenewalOutcome:
        paid = await self.authority.fetch_with_payment("POST", self.renew_url, json={"token": token})
        response = paid.response
        if not response.is_success:
            raise TransientNetworkError(f"renew failed: {response.status_code}")
        renewed = decode_renew_response(response_json(response))
        if renewed is None:
            raise ProtocolShapeError("renew response shape invalid")
        logger.debug("Renewed lease over HTTP via %s", self.renew_url)
        return RenewalOutcome(
            message={"op": "renew_token", "token": renewed.token},
            token=renewed.token,
            expires_at=renewed.expires_at,
            slice_seconds=int(renewed.slice_seconds),
        )


class InbandRenewal(RenewalStrategy):
    """Fetch an unpaid 402 challenge, sign it, and answer over the open socket."""

    method = "inband"

    def __init__(self, authority: PaymentAuthority, renew_url: str, schema_version: SchemaVersion) -> None:
        if schema_version != "v2":
            raise ConfigurationError("inband renewal requires v2 schema")
        super().__init__(authority, renew_url)

    async def renew(self, token: str) -> RenewalOutcome:
        response = await self.authority.request("POST", self.renew_url, json={"token": token})
        if response.status_code != 402:
            raise TransientNetworkError(f"expected 402 challenge, got {response.status_code}")
        required = decode_payment_challenge(response.headers, response_json(response))
        if required is None:
            raise ProtocolShapeError("renew challenge shape invalid")
        if required.version != 2:
            raise ProtocolShapeError(f"unsupported payment version: {required.version}")
        requirement, payload = await self.authority.sign_challenge(required)
        logger.debug("Signed in-band renewal challenge on %s", requirement.network)
        return RenewalOutcome(
            message={
                "op": "renew_inband",
                "paymentRequirements": requirement.to_wire(),
                "paymentPayload": payload.to_wire(),
            },
        )


def build_renewal(
    method: RenewMethod,
    authority: PaymentAuthority,
    renew_url: str,
    schema_version: SchemaVersion,
) -> RenewalStrategy:
    if method == "inband":
        return InbandRenewal(authority, renew_url, schema_version)
    return HttpRenewal(authority, renew_url)


__all__ = ["HttpRenewal", "InbandRenewal", "RenewalOutcome", "RenewalStrategy", "build_renewal"]
