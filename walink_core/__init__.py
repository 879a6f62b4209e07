"""Session lifecycle management for a linked WhatsApp Web device."""

__version__ = "0.1.0"

from .client import (
    DeliveryReceipt,
    HandleFactory,
    OutgoingMessage,
    ProtocolHandle,
    normalize_recipient,
)
from .config import ServiceSettings, SessionConfig
from .controller import InitResult, PairingResult, PairingResultKind, SessionController
from .credentials import CredentialStore, FileCredentialStore, MemoryCredentialStore
from .errors import (
    BridgeClientError,
    BridgeConnectionError,
    BridgeHandshakeError,
    BridgeResponseError,
    BridgeTimeout,
    CredentialLoadFailed,
    DeliveryFailed,
    HandleConstructionFailed,
    NotConnected,
    SessionError,
    WalinkError,
)
from .events import Closed, CredentialsChanged, LifecycleEvent, Opened, PairingCodeAvailable
from .policy import ReasonClass, ReconnectionPolicy, Verdict, VerdictKind, classify_close_reason
from .state import PairingPayload, SessionStatus, StatusSnapshot

__all__ = [
    "BridgeClientError",
    "BridgeConnectionError",
    "BridgeHandshakeError",
    "BridgeResponseError",
    "BridgeTimeout",
    "Closed",
    "CredentialLoadFailed",
    "CredentialStore",
    "CredentialsChanged",
    "DeliveryFailed",
    "DeliveryReceipt",
    "FileCredentialStore",
    "HandleConstructionFailed",
    "HandleFactory",
    "InitResult",
    "LifecycleEvent",
    "MemoryCredentialStore",
    "NotConnected",
    "Opened",
    "OutgoingMessage",
    "PairingCodeAvailable",
    "PairingPayload",
    "PairingResult",
    "PairingResultKind",
    "ProtocolHandle",
    "ReasonClass",
    "ReconnectionPolicy",
    "ServiceSettings",
    "SessionConfig",
    "SessionController",
    "SessionError",
    "SessionStatus",
    "StatusSnapshot",
    "Verdict",
    "VerdictKind",
    "WalinkError",
    "__version__",
    "classify_close_reason",
    "normalize_recipient",
]
