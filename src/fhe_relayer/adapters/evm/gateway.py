"""
EVM Contract Gateway

Thin ``AsyncWeb3`` client used by the operation executor to read encrypted
handles from view functions and to submit state-changing calls.

Key Features:
    - View calls against an arbitrary JSON ABI
    - Transaction build, sign and broadcast with a caller-supplied key
    - Receipt polling with a bounded number of attempts

Dependencies:
    - web3.py: For blockchain RPC interaction
    - eth_account: For transaction signing
"""

import asyncio
import logging
from typing import Any, Optional, Sequence

from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound

from ...schemas.bases import TransactionConfirmation, TransactionStatus
from ..bases import AbiEntry, ContractGateway
from .constants import shorten, to_hex
from .signatures import normalize_private_key

logger = logging.getLogger(__name__)


class EVMContractGateway(ContractGateway):
    """
    Contract gateway over a single JSON-RPC endpoint.

    Usage:
        gateway = EVMContractGateway(rpc_url="https://...", chain_id=11155111)
        handle = await gateway.call(contract, abi, "getCount")
        confirmation = await gateway.transact(contract, abi, "increment", [h, proof], key)
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        request_timeout: int = 60,
        receipt_attempts: int = 60,
        poll_interval: float = 2.0,
        web3: Optional[AsyncWeb3] = None,
    ):
        if not rpc_url and web3 is None:
            raise ValueError("rpc_url is required")
        self.chain_id = chain_id
        self._receipt_attempts = receipt_attempts
        self._poll_interval = poll_interval
        self._web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": request_timeout}
        ))

    def _contract(self, contract_address: str, abi: Sequence[AbiEntry]):
        return self._web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address),
            abi=list(abi),
        )

    async def call(
        self,
        contract_address: str,
        abi: Sequence[AbiEntry],
        function_name: str,
        args: Sequence[Any] = (),
    ) -> Any:
        contract = self._contract(contract_address, abi)
        return await contract.functions[function_name](*args).call()

    async def transact(
        self,
        contract_address: str,
        abi: Sequence[AbiEntry],
        function_name: str,
        args: Sequence[Any],
        private_key: str,
    ) -> TransactionConfirmation:
        """
        Build, sign and broadcast ``function_name(*args)`` then await the receipt.

        Fee fields follow EIP-1559 when the node reports a base fee and fall
        back to a legacy ``gasPrice`` otherwise. Gas is estimated with a 10%
        margin.

        Returns:
            ``TransactionConfirmation``; build errors surface as
            ``NETWORK_ERROR`` rather than raising.
        """
        account = Account.from_key(normalize_private_key(private_key))
        sender = AsyncWeb3.to_checksum_address(account.address)
        contract = self._contract(contract_address, abi)
        tx_fn = contract.functions[function_name](*args)

        try:
            gas_estimate = await tx_fn.estimate_gas({"from": sender})
            tx_nonce = await self._web3.eth.get_transaction_count(sender, "pending")
            tx_params = {
                "from": sender,
                "gas": int(gas_estimate * 1.1),
                "nonce": tx_nonce,
                "chainId": self.chain_id,
            }
            tx_params.update(await self._fee_params())
            tx_dict = await tx_fn.build_transaction(tx_params)
            signed_tx = account.sign_transaction(tx_dict)
        except Exception as e:
            logger.warning("Failed to build %s on %s: %s", function_name, shorten(contract_address), e)
            return TransactionConfirmation(
                status=TransactionStatus.NETWORK_ERROR,
                tx_hash="0x",
                error_message=f"Failed to build transaction: {e}",
            )

        return await self._send_and_confirm(signed_tx.raw_transaction)

    async def _fee_params(self) -> dict:
        latest = await self._web3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is None:
            return {"gasPrice": await self._web3.eth.gas_price}
        priority_fee = await self._web3.eth.max_priority_fee
        return {
            "maxFeePerGas": base_fee * 2 + priority_fee,
            "maxPriorityFeePerGas": priority_fee,
        }

    async def _send_and_confirm(self, raw_transaction: bytes) -> TransactionConfirmation:
        """
        Broadcast a signed transaction and poll for its on-chain receipt.

        Polls ``eth_getTransactionReceipt`` every ``poll_interval`` seconds
        for at most ``receipt_attempts`` rounds.
        """
        try:
            tx_hash = to_hex(bytes(await self._web3.eth.send_raw_transaction(raw_transaction)))
        except Exception as e:
            return TransactionConfirmation(
                status=TransactionStatus.NETWORK_ERROR,
                tx_hash="0x",
                error_message=f"Failed to broadcast transaction: {e}",
            )

        receipt = None
        for _ in range(self._receipt_attempts):
            try:
                receipt = await self._web3.eth.get_transaction_receipt(tx_hash)
                if receipt:
                    break
            except TransactionNotFound:
                pass  # still pending
            await asyncio.sleep(self._poll_interval)

        if not receipt:
            return TransactionConfirmation(
                status=TransactionStatus.TIMEOUT,
                tx_hash=tx_hash,
                error_message="Transaction confirmation timed out",
            )

        if receipt.get("status") == 1:
            return TransactionConfirmation(
                status=TransactionStatus.SUCCESS,
                tx_hash=tx_hash,
                block_number=receipt["blockNumber"],
                gas_used=receipt["gasUsed"],
            )
        return TransactionConfirmation(
            status=TransactionStatus.FAILED,
            tx_hash=tx_hash,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
            error_message="Transaction reverted on-chain",
        )
