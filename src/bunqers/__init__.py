"""bunqers: signed, session-based client for the bunq REST API."""

from bunqers.bootstrap import CredentialMachine
from bunqers.client import SessionClient
from bunqers.config import ClientConfig, resolve_config
from bunqers.connect import connect, resume
from bunqers.credential_store import DEFAULT_BUNQERS_HOME, CredentialStore
from bunqers.credentials import (
    Credential,
    Initialized,
    Installed,
    Registered,
    Session,
    UncheckedSession,
    Uninitialized,
    degrade_to,
    from_record,
    to_record,
)
from bunqers.envelope import (
    Envelope,
    EnvelopeCodec,
    FileDumpSink,
    MemorySink,
    NullSink,
    classify,
    decode_multiple,
    decode_positional,
    decode_single,
    parse_envelope,
)
from bunqers.errors import (
    ApiError,
    BuildError,
    BuildErrorReason,
    BunqersError,
    CredentialStoreError,
    EnvelopeError,
    KeyFormatError,
    KeyGenerationError,
    MalformedJson,
    MessengerStateError,
    RateLimited,
    ShapeMismatch,
    SignatureInvalid,
    TransportError,
)
from bunqers.keys import KeyPair, ServerPublicKey
from bunqers.messenger import SignedMessenger
from bunqers.types import (
    Amount,
    ApiErrorDescription,
    MonetaryAccountBank,
    Multiple,
    Pagination,
    PaymentRequest,
    PaymentRequestStatus,
    User,
)

__all__ = [
    "DEFAULT_BUNQERS_HOME",
    "Amount",
    "ApiError",
    "ApiErrorDescription",
    "BuildError",
    "BuildErrorReason",
    "BunqersError",
    "ClientConfig",
    "Credential",
    "CredentialMachine",
    "CredentialStore",
    "CredentialStoreError",
    "Envelope",
    "EnvelopeCodec",
    "EnvelopeError",
    "FileDumpSink",
    "Initialized",
    "Installed",
    "KeyFormatError",
    "KeyGenerationError",
    "KeyPair",
    "MalformedJson",
    "MemorySink",
    "MessengerStateError",
    "MonetaryAccountBank",
    "Multiple",
    "NullSink",
    "Pagination",
    "PaymentRequest",
    "PaymentRequestStatus",
    "RateLimited",
    "Registered",
    "ServerPublicKey",
    "Session",
    "SessionClient",
    "ShapeMismatch",
    "SignatureInvalid",
    "SignedMessenger",
    "TransportError",
    "UncheckedSession",
    "Uninitialized",
    "User",
    "classify",
    "connect",
    "decode_multiple",
    "decode_positional",
    "decode_single",
    "degrade_to",
    "from_record",
    "parse_envelope",
    "resolve_config",
    "resume",
    "to_record",
]

__version__ = "0.1.0"
