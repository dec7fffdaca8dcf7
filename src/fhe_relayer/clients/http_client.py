"""
Remote FHE Relayer Client

httpx client for the relayer's ``/v1`` API. It opens a session, signs the
EIP-712 challenge when the relayer asks for one, signs every read/mutate
request with the local account and tracks the session nonce.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

import httpx
from eth_account.signers.local import LocalAccount

from ..adapters.bases import AbiEntry, ContractGateway
from ..adapters.evm.constants import to_hex
from ..adapters.evm.signatures import account_from_key, sign_request_message, sign_typed_data
from ..engine.authenticator import DEFAULT_PROTOCOL_TAG, build_request_message
from ..engine.classifier import find_function
from ..engine.exceptions import RelayerError, TransactionFailure, error_from_dict
from ..schemas.https import (
    AuthorizeResponse,
    ClientRequestHeader,
    MutateResponse,
    OpenSessionResponse,
    ReadResponse,
    SessionInfoResponse,
)

CLIENT_SIGN = "client-sign"


class RemoteFheClient(httpx.AsyncClient):
    """
    Extended httpx.AsyncClient speaking the relayer protocol.

    Fully compatible with httpx.AsyncClient - supports all methods, properties,
    and can be used as an async context manager.

    Usage:
        ```python
        async with RemoteFheClient(account, contract, abi, base_url="http://localhost:4000") as client:
            await client.open_session()
            count = await client.read("getCount")
            await client.mutate("increment", [5])
        ```
    """

    def __init__(
        self,
        account: Union[LocalAccount, str],
        contract_address: str,
        abi: Sequence[AbiEntry],
        api_key: Optional[str] = None,
        gateway: Optional[ContractGateway] = None,
        protocol_tag: str = DEFAULT_PROTOCOL_TAG,
        **kwargs
    ):
        """
        Args:
            account: Local account (or hex key) that owns the session.
            contract_address: Target contract.
            abi: Contract ABI sent to the relayer.
            api_key: Value of the ``x-relayer-key`` header, if required.
            gateway: Used to submit ``client-sign`` mutations with the local key.
            protocol_tag: Prefix of the signed request message.
            **kwargs: All standard httpx.AsyncClient arguments (base_url, timeout, ...)
        """
        headers = ClientRequestHeader(relayer_key=api_key).model_dump(by_alias=True, exclude_none=True)
        headers.update(kwargs.pop("headers", None) or {})
        super().__init__(headers=headers, **kwargs)
        self.account = account if isinstance(account, LocalAccount) else account_from_key(account)
        self.contract_address = contract_address
        self.abi = [dict(entry) for entry in abi]
        self.gateway = gateway
        self.protocol_tag = protocol_tag
        self.session_id: Optional[str] = None
        self.chain_id: Optional[int] = None
        self.nonce = 0
        self.authorization_public_key: Optional[str] = None

    # =========================================================================
    # Session
    # =========================================================================

    async def open_session(self, transaction_key: Optional[str] = None) -> OpenSessionResponse:
        """
        Open a session, completing the EIP-712 challenge if one is returned.

        Args:
            transaction_key: Hand the key to the relayer (server-custody mode).
        """
        body: Dict[str, Any] = {
            "contractAddress": self.contract_address,
            "abi": self.abi,
            "userAddress": self.account.address,
        }
        if transaction_key:
            body["userPrivateKey"] = transaction_key
        session = OpenSessionResponse.model_validate(await self._post_json("/v1/sessions", body))
        self.session_id = session.session_id
        self.chain_id = session.chain_id
        self.nonce = session.nonce

        if session.authorization is not None:
            self.authorization_public_key = session.authorization.public_key
            authorized = await self.authorize(session.authorization.typed_data)
            self.nonce = authorized.nonce
        return session

    async def authorize(self, typed_data: Dict[str, Any]) -> AuthorizeResponse:
        """Sign ``typed_data`` with the local account and submit it."""
        signature = sign_typed_data(self.account, typed_data)
        payload = await self._post_json(
            f"/v1/sessions/{self._require_session()}/authorize",
            {"signature": signature},
        )
        return AuthorizeResponse.model_validate(payload)

    async def refresh(self) -> SessionInfoResponse:
        """Re-sync the local nonce with the relayer."""
        response = await super().request("GET", f"/v1/sessions/{self._require_session()}")
        info = SessionInfoResponse.model_validate(self._decode(response))
        self.nonce = info.nonce
        return info

    async def close_session(self) -> None:
        response = await super().request("DELETE", f"/v1/sessions/{self._require_session()}")
        if response.status_code != 204:
            self._decode(response)
        self.session_id = None

    # =========================================================================
    # Operations
    # =========================================================================

    async def read(self, function_name: str = "getCount") -> ReadResponse:
        """Decrypt the handle returned by ``function_name``."""
        payload = await self._signed_post("/v1/fhe/read", function_name, [])
        return ReadResponse.model_validate(payload)

    async def mutate(self, function_name: str, values: Optional[Sequence[Any]] = None) -> MutateResponse:
        """
        Execute ``function_name(*values)``.

        In client-sign mode the prepared call is submitted through
        ``gateway`` with the local key; the returned response then carries
        the transaction hash and block number.

        Raises:
            TransactionFailure: No gateway for a client-sign response, or the
                transaction failed.
        """
        payload = await self._signed_post("/v1/fhe/mutate", function_name, list(values or []))
        result = MutateResponse.model_validate(payload)
        if result.mode != CLIENT_SIGN:
            return result

        if self.gateway is None:
            raise TransactionFailure("Relayer returned a client-sign call but no gateway is configured")
        params = decode_call_params(self.abi, function_name, result.params or [])
        confirmation = await self.gateway.transact(
            self.contract_address,
            self.abi,
            function_name,
            params,
            to_hex(bytes(self.account.key)),
        )
        if not confirmation.is_success():
            raise TransactionFailure(
                confirmation.error_message or "Transaction failed",
                details={"tx_hash": confirmation.tx_hash},
            )
        return result.model_copy(update={
            "tx_hash": confirmation.tx_hash,
            "block_number": confirmation.block_number,
        })

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_session(self) -> str:
        if not self.session_id:
            raise RelayerError("No open session; call open_session() first")
        return self.session_id

    async def _signed_post(self, path: str, function_name: str, values: List[Any]) -> Dict[str, Any]:
        session_id = self._require_session()
        message = build_request_message(session_id, function_name, values, self.nonce, self.protocol_tag)
        payload = await self._post_json(path, {
            "sessionId": session_id,
            "functionName": function_name,
            "values": values,
            "signature": sign_request_message(self.account, message),
            "nonce": self.nonce,
        })
        self.nonce = payload.get("nextNonce", self.nonce + 1)
        return payload

    async def _post_json(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = await super().request("POST", path, json=body)
        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        """Return the JSON body or raise the relayer error it describes."""
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.is_success:
            return payload
        if isinstance(payload, dict) and "kind" in payload:
            raise error_from_dict(payload, response.status_code)
        raise RelayerError(
            f"Relayer request failed ({response.status_code})",
            details={"status_code": response.status_code},
        )


def decode_call_params(abi: Sequence[AbiEntry], function_name: str, params: Sequence[Any]) -> List[Any]:
    """
    Turn JSON call parameters back into web3 argument types.

    Hex strings in ``bytes``/``bytesN`` slots become bytes; decimal strings in
    integer slots become ints.
    """
    inputs = find_function(abi, function_name).get("inputs") or []
    decoded = []
    for declared, value in zip(inputs, params):
        abi_type = declared.get("type", "")
        if abi_type.startswith("bytes") and isinstance(value, str) and value.startswith("0x"):
            value = bytes.fromhex(value[2:])
        elif abi_type.startswith(("uint", "int")) and isinstance(value, str):
            value = int(value, 0) if value.startswith("0x") else int(value)
        decoded.append(value)
    return decoded
