from .authority import ChargePreview, PaidResponse, PaymentAuthority, Signer, StreamGrant
from .protocol import (
    PaymentPayload,
    PaymentRequired,
    PaymentRequirements,
    SchemaVersion,
    decode_payment_challenge,
    encode_payment_header,
)

__all__ = [
    "ChargePreview",
    "PaidResponse",
    "PaymentAuthority",
    "PaymentPayload",
    "PaymentRequired",
    "PaymentRequirements",
    "SchemaVersion",
    "Signer",
    "StreamGrant",
    "decode_payment_challenge",
    "encode_payment_header",
]
