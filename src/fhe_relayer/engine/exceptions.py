"""
Exception and Error Definitions Module

Defines the error taxonomy surfaced by the relayer. Every error carries a
stable ``kind`` string, an HTTP ``status_code`` and a ``retryable`` flag so
callers can tell "sign again" apart from "your session is gone" and from
"transient, retry later".

Exception Hierarchy:
    RelayerError (root)
    ├── UnknownSession
    ├── IdentityMismatch
    ├── AuthenticationError
    │   ├── SignatureMismatch
    │   ├── InvalidNonce
    │   └── InvalidApiKey
    ├── AuthorizationError
    │   ├── AuthorizationRequired
    │   └── NothingToAuthorize
    ├── UnknownOperation
    ├── InvalidArguments
    ├── EngineError
    │   ├── EncryptionFailure
    │   ├── DecryptionFailure
    │   └── EngineUnavailable
    ├── TransactionFailure
    └── ConfigurationError
"""

from typing import Any, Dict, Optional


class RelayerError(Exception):
    """
    Root exception class for all relayer errors.

    Attributes:
        kind: Machine-readable error identifier.
        status_code: HTTP status used when the error reaches the API surface.
        retryable: Whether retrying the same request may succeed.
        message: Human-readable description.
        details: Optional structured context (never contains secrets).
    """

    kind: str = "relayer_error"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Render the error as the JSON body returned to clients."""
        payload: Dict[str, Any] = {
            "error": self.message,
            "kind": self.kind,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class UnknownSession(RelayerError):
    """
    Raised when a session id does not exist or has expired.

    The client must open a new session; retrying is pointless.
    """

    kind = "unknown_session"
    status_code = 404


class IdentityMismatch(RelayerError):
    """
    Raised when a supplied transaction key does not belong to the claimed owner.

    This includes malformed keys that cannot be turned into an account.
    """

    kind = "identity_mismatch"
    status_code = 400


class AuthenticationError(RelayerError):
    """
    Base exception for request authentication failures.

    These always require client action (a fresh signature or nonce).
    """

    kind = "authentication_error"
    status_code = 401


class SignatureMismatch(AuthenticationError):
    """
    Raised when a request or challenge signature does not recover to the owner.

    This includes scenarios such as:
    - Signature produced by another account
    - Signature over a different message or nonce
    - Malformed or missing signature bytes
    """

    kind = "signature_mismatch"


class InvalidNonce(AuthenticationError):
    """
    Raised when the claimed nonce differs from the session nonce.

    Protects against replayed and out-of-order requests.

    Details:
        expected: Nonce the session is waiting for
        provided: Nonce claimed by the request
    """

    kind = "invalid_nonce"
    status_code = 409


class InvalidApiKey(AuthenticationError):
    """Raised when the relayer requires an API key and none or a wrong one was sent."""

    kind = "invalid_api_key"


class AuthorizationError(RelayerError):
    """Base exception for decryption authorization state errors."""

    kind = "authorization_error"
    status_code = 403


class AuthorizationRequired(AuthorizationError):
    """
    Raised when an operation is attempted before the challenge is completed.

    When a permission expired on a pure-relay session, ``details`` carries the
    freshly issued challenge so the client can sign it straight away.
    """

    kind = "authorization_required"


class NothingToAuthorize(AuthorizationError):
    """Raised when authorize is called on a session that has no challenge and no permission."""

    kind = "nothing_to_authorize"
    status_code = 400


class UnknownOperation(RelayerError):
    """Raised when a function name is not present in the session ABI."""

    kind = "unknown_operation"
    status_code = 404


class InvalidArguments(RelayerError):
    """
    Raised when operation arguments do not fit the declared inputs.

    This includes scenarios such as:
    - Fewer or more values than declared inputs
    - Integer outside the encrypted type's bit width
    - Non-address value for an encrypted address slot
    """

    kind = "invalid_arguments"
    status_code = 422


class EngineError(RelayerError):
    """Base exception for failures reported by the crypto engine."""

    kind = "engine_error"
    status_code = 502


class EncryptionFailure(EngineError):
    """Raised when the engine fails to build encrypted inputs."""

    kind = "encryption_failure"


class DecryptionFailure(EngineError):
    """Raised when the engine fails to decrypt or returns no value for a handle."""

    kind = "decryption_failure"


class EngineUnavailable(EngineError):
    """
    Raised when the crypto engine could not be initialized.

    Transient: callers may retry with backoff.
    """

    kind = "engine_unavailable"
    status_code = 503
    retryable = True


class TransactionFailure(RelayerError):
    """
    Raised when a contract call or transaction fails on-chain.

    Details:
        tx_hash: Transaction hash if the transaction was broadcast
    """

    kind = "transaction_failure"
    status_code = 502


class ConfigurationError(RelayerError):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - Missing RPC URL
    - Non-numeric chain id or port
    """

    kind = "configuration_error"


def _all_error_classes(root: type = RelayerError):
    yield root
    for subclass in root.__subclasses__():
        yield from _all_error_classes(subclass)


def error_from_dict(payload: Dict[str, Any], status_code: Optional[int] = None) -> RelayerError:
    """
    Rebuild a ``RelayerError`` from the JSON body rendered by ``to_dict()``.

    Unknown kinds map to the root class.
    """
    kind = payload.get("kind")
    error_class = next((cls for cls in _all_error_classes() if cls.kind == kind), RelayerError)
    message = payload.get("error") or f"Relayer request failed ({status_code})"
    return error_class(message, details=payload.get("details"))
