"""
Request Authenticator

Every read/mutate request is signed by the session owner with EIP-191
``personal_sign`` over the canonical message::

    PROTOCOL_TAG:sessionId:operationName:JSON(args):nonce

``JSON(args)`` is compact (``[5]``, ``[]``) so clients written in any
language produce the same bytes.
"""

import json
from typing import TYPE_CHECKING, Any, Optional, Sequence

from ..adapters.evm.signatures import addresses_equal, recover_message_signer
from .exceptions import InvalidNonce, SignatureMismatch

if TYPE_CHECKING:
    from .sessions import Session

DEFAULT_PROTOCOL_TAG = "ZAMA_FHE_REQUEST"


def build_request_message(
    session_id: str,
    operation: str,
    args: Optional[Sequence[Any]],
    nonce: int,
    protocol_tag: str = DEFAULT_PROTOCOL_TAG,
) -> str:
    encoded = json.dumps(list(args or []), separators=(",", ":"), ensure_ascii=False)
    return f"{protocol_tag}:{session_id}:{operation}:{encoded}:{nonce}"


class RequestAuthenticator:
    """Checks nonce and owner signature of a request envelope."""

    def __init__(self, protocol_tag: str = DEFAULT_PROTOCOL_TAG):
        self.protocol_tag = protocol_tag

    def build_message(self, session_id: str, operation: str, args: Optional[Sequence[Any]], nonce: int) -> str:
        return build_request_message(session_id, operation, args, nonce, self.protocol_tag)

    def verify(
        self,
        session: "Session",
        operation: str,
        args: Optional[Sequence[Any]],
        signature: Optional[str],
        claimed_nonce: int,
    ) -> None:
        """
        Authenticate a request against ``session``. Never touches the nonce.

        Raises:
            InvalidNonce: ``claimed_nonce`` is not the session's current nonce.
            SignatureMismatch: Missing or malformed signature, or a signer
                other than the session owner.
        """
        if claimed_nonce != session.nonce:
            raise InvalidNonce(
                "Invalid nonce",
                details={"expected": session.nonce, "provided": claimed_nonce},
            )
        if not signature:
            raise SignatureMismatch("Missing request signature")

        message = self.build_message(session.id, operation, args, claimed_nonce)
        try:
            signer = recover_message_signer(message, signature)
        except ValueError as e:
            raise SignatureMismatch(f"Invalid request signature: {e}") from e
        if not addresses_equal(signer, session.owner):
            raise SignatureMismatch("Signature mismatch")
