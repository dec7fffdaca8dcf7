from .gateway import EVMContractGateway
from .constants import ZERO_HASH, handle_to_hex, is_zero_handle, is_valid_evm_address
from .signatures import (
    account_from_key,
    sign_request_message,
    recover_message_signer,
    sign_typed_data,
    recover_typed_data_signer,
)
from .standards import (
    EIP712Domain,
    UserDecryptRequestMessage,
    UserDecryptTypedData,
    build_user_decrypt_typed_data,
)

__all__ = [
    "EVMContractGateway",
    "ZERO_HASH",
    "handle_to_hex",
    "is_zero_handle",
    "is_valid_evm_address",
    "account_from_key",
    "sign_request_message",
    "recover_message_signer",
    "sign_typed_data",
    "recover_typed_data_signer",
    "EIP712Domain",
    "UserDecryptRequestMessage",
    "UserDecryptTypedData",
    "build_user_decrypt_typed_data",
]
