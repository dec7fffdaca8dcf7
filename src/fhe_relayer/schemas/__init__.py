from .bases import (
    CanonicalModel,
    DecryptionPermission,
    PendingChallenge,
    EncryptedInputs,
    SessionStatus,
    TransactionStatus,
    TransactionConfirmation,
)
from .https import (
    ClientRequestHeader,
    OpenSessionRequest,
    OpenSessionResponse,
    AuthorizationChallenge,
    SessionInfoResponse,
    AuthorizeRequest,
    AuthorizeResponse,
    ReadRequest,
    ReadResponse,
    MutateRequest,
    MutateResponse,
    ErrorResponse,
)

__all__ = [
    "CanonicalModel",
    "DecryptionPermission",
    "PendingChallenge",
    "EncryptedInputs",
    "SessionStatus",
    "TransactionStatus",
    "TransactionConfirmation",
    "ClientRequestHeader",
    "OpenSessionRequest",
    "OpenSessionResponse",
    "AuthorizationChallenge",
    "SessionInfoResponse",
    "AuthorizeRequest",
    "AuthorizeResponse",
    "ReadRequest",
    "ReadResponse",
    "MutateRequest",
    "MutateResponse",
    "ErrorResponse",
]
