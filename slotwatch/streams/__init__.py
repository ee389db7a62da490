from .manager import ChargeRow, ChargeSummary, SessionManager, StreamRuntime
from .renewal import HttpRenewal, InbandRenewal, RenewalOutcome, RenewalStrategy, build_renewal
from .session import (
    Connected,
    ControlReceived,
    Disconnected,
    DomainReceived,
    LeaseToken,
    LeaseUpdated,
    SchemaCharged,
    SessionError,
    SessionEvent,
    SessionState,
    StatusReceived,
    StreamSession,
)

__all__ = [
    "ChargeRow",
    "ChargeSummary",
    "Connected",
    "ControlReceived",
    "Disconnected",
    "DomainReceived",
    "HttpRenewal",
    "InbandRenewal",
    "LeaseToken",
    "LeaseUpdated",
    "RenewalOutcome",
    "RenewalStrategy",
    "SchemaCharged",
    "SessionError",
    "SessionEvent",
    "SessionManager",
    "SessionState",
    "StatusReceived",
    "StreamRuntime",
    "StreamSession",
    "build_renewal",
]
