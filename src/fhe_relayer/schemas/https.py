"""
HTTP Request/Response Schema Models for the FHE Relayer

This module defines the Pydantic models exchanged between remote clients and
the relayer. JSON field names are camelCase (``sessionId``, ``nextNonce``);
Python code uses the snake_case attribute names.

The main flow consists of:
1. Client opens a session (``POST /v1/sessions``)
2. Pure-relay clients sign the returned EIP-712 challenge and authorize
3. Client sends signed read/mutate requests carrying the current nonce
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .bases import SessionStatus

#: Largest integer a JavaScript client can hold without precision loss.
MAX_SAFE_INTEGER = 2 ** 53 - 1


def to_json_safe(value: Any) -> Any:
    """
    Convert call parameters and decrypted values to JSON-friendly types.

    Bytes become 0x hex, integers outside the JavaScript safe range become
    decimal strings, containers are converted recursively.
    """
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value if abs(value) <= MAX_SAFE_INTEGER else str(value)
    if isinstance(value, (list, tuple)):
        return [to_json_safe(item) for item in value]
    if isinstance(value, dict):
        return {key: to_json_safe(item) for key, item in value.items()}
    return value


class CamelModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Request Headers
# ============================================================================

class ClientRequestHeader(BaseModel):
    """HTTP request headers sent by client.

    Attributes:
        content_type: MIME type of request body (default: application/json).
        relayer_key: API key, required when the relayer has keys configured.
    """
    model_config = ConfigDict(populate_by_name=True)
    content_type: str = Field(default="application/json", alias="Content-Type")
    relayer_key: Optional[str] = Field(default=None, alias="x-relayer-key")


# ============================================================================
# Sessions
# ============================================================================

class OpenSessionRequest(CamelModel):
    """Body of ``POST /v1/sessions``.

    Attributes:
        contract_address: Target contract.
        abi: Contract ABI (list of JSON descriptors).
        user_address: Session owner.
        user_private_key: Optional owner key enabling server-custody mode.
    """
    contract_address: str = Field(..., description="Target contract address")
    abi: List[Dict[str, Any]] = Field(..., description="Contract ABI")
    user_address: str = Field(..., description="Session owner address")
    user_private_key: Optional[str] = Field(default=None, repr=False, description="Owner key (server-custody)")


class AuthorizationChallenge(CamelModel):
    """EIP-712 challenge a pure-relay client must sign with ``eth_signTypedData_v4``."""
    type: str = Field(default="eip712")
    public_key: str
    start_timestamp: int
    duration_days: int
    contract_addresses: List[str]
    typed_data: Dict[str, Any]


class OpenSessionResponse(CamelModel):
    """Response of ``POST /v1/sessions``."""
    session_id: str
    chain_id: int
    nonce: int
    status: SessionStatus
    authorization: Optional[AuthorizationChallenge] = None


class SessionInfoResponse(CamelModel):
    """Response of ``GET /v1/sessions/{id}``."""
    session_id: str
    contract_address: str
    owner: str
    nonce: int
    status: SessionStatus
    mode: str
    permission_expires_at: Optional[int] = None
    created_at: int
    last_used: int


class AuthorizeRequest(CamelModel):
    """Body of ``POST /v1/sessions/{id}/authorize``."""
    signature: str = Field(..., min_length=1, description="Owner's EIP-712 signature over the challenge")


class AuthorizeResponse(CamelModel):
    status: SessionStatus
    nonce: int


# ============================================================================
# Operations
# ============================================================================

class ReadRequest(CamelModel):
    """Signed read request; the signed argument list is always ``[]``."""
    session_id: str
    function_name: str = Field(..., min_length=1)
    signature: str
    nonce: int = Field(..., ge=0)


class ReadResponse(CamelModel):
    handle: str
    value: Union[bool, int, str]
    next_nonce: int


class MutateRequest(CamelModel):
    """Signed mutate request; ``values`` are the cleartext arguments."""
    session_id: str
    function_name: str = Field(..., min_length=1)
    values: List[Any] = Field(default_factory=list)
    signature: str
    nonce: int = Field(..., ge=0)


class MutateResponse(CamelModel):
    """
    Either ``txHash``/``blockNumber`` (server-custody) or ``mode="client-sign"``
    with the prepared ``params`` the client submits itself.
    """
    next_nonce: int
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    mode: Optional[str] = None
    contract_address: Optional[str] = None
    function_name: Optional[str] = None
    params: Optional[List[Any]] = None


class ErrorResponse(BaseModel):
    """Error body rendered for every ``RelayerError``."""
    error: str
    kind: str
    retryable: bool = False
    details: Optional[Dict[str, Any]] = None
