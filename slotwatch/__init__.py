"""slotwatch: paid x402/ws402 market-data stream client."""

from .config import ClientConfig, StreamSpec, X402Settings, load_config
from .errors import (
    AuthenticationError,
    ConfigurationError,
    LookupFailure,
    PaymentRejected,
    ProtocolShapeError,
    SigningError,
    SlotwatchError,
    TransientNetworkError,
)
from .ledger import SpendLedger
from .mints import MintRegistry
from .payments import PaymentAuthority, Signer
from .schemas import StreamId
from .store import BoundedEventStore
from .streams import SessionManager, StreamSession
from .watchlist import WatchlistCoordinator

__version__ = "0.1.0"

__all__ = [
    "AuthenticationError",
    "BoundedEventStore",
    "ClientConfig",
    "ConfigurationError",
    "LookupFailure",
    "MintRegistry",
    "PaymentAuthority",
    "PaymentRejected",
    "ProtocolShapeError",
    "SessionManager",
    "Signer",
    "SigningError",
    "SlotwatchError",
    "SpendLedger",
    "StreamId",
    "StreamSession",
    "StreamSpec",
    "TransientNetworkError",
    "WatchlistCoordinator",
    "X402Settings",
    "load_config",
]
