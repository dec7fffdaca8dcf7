"""
ABI Parameter Classifier

Maps the declared inputs of a contract function to the way each positional
argument must be produced:

- encrypted slots (``externalEuint32``, ``externalEbool``, ...) are fed to
  the engine's input builder and replaced by the resulting handle,
- a trailing ``bytes inputProof`` slot receives the single input proof,
- everything else passes through untouched.

Classification is a pure function of the ABI; ``build_encrypted_args`` is
the only part that talks to the engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

from ..adapters.bases import AbiEntry, EncryptedInputBuilder
from ..adapters.evm.constants import is_valid_evm_address
from .exceptions import EncryptionFailure, InvalidArguments, UnknownOperation


class InputKind(str, Enum):
    """Stable tag for how a single function input is produced."""

    EBOOL = "ebool"
    EUINT8 = "euint8"
    EUINT16 = "euint16"
    EUINT32 = "euint32"
    EUINT64 = "euint64"
    EUINT128 = "euint128"
    EUINT256 = "euint256"
    EADDRESS = "eaddress"
    PROOF = "proof"
    PASSTHROUGH = "passthrough"

    @property
    def is_encrypted(self) -> bool:
        return self not in (InputKind.PROOF, InputKind.PASSTHROUGH)

    @property
    def bits(self) -> Optional[int]:
        """Bit width of an encrypted integer kind, ``None`` otherwise."""
        if self.value.startswith("euint"):
            return int(self.value[len("euint"):])
        return None


#: Builder method used to encrypt each encrypted kind.
ENCODERS = {
    InputKind.EBOOL: "add_bool",
    InputKind.EUINT8: "add8",
    InputKind.EUINT16: "add16",
    InputKind.EUINT32: "add32",
    InputKind.EUINT64: "add64",
    InputKind.EUINT128: "add128",
    InputKind.EUINT256: "add256",
    InputKind.EADDRESS: "add_address",
}

_ENCRYPTED_TAGS = {kind.value: kind for kind in ENCODERS}
_EXTERNAL_PREFIX = "external"
_PROOF_NAME = "inputProof"


@dataclass(frozen=True)
class ClassifiedInput:
    index: int
    name: str
    abi_type: str
    kind: InputKind


@dataclass(frozen=True)
class Classification:
    """
    Per-input classification of one ABI function.

    Attributes:
        function_name: Name of the classified function
        inputs: One ``ClassifiedInput`` per declared input, in order
    """

    function_name: str
    inputs: Tuple[ClassifiedInput, ...]

    @property
    def value_slots(self) -> Tuple[ClassifiedInput, ...]:
        """Inputs the caller supplies a value for (everything but the proof)."""
        return tuple(item for item in self.inputs if item.kind is not InputKind.PROOF)

    @property
    def encrypted_count(self) -> int:
        return sum(1 for item in self.inputs if item.kind.is_encrypted)

    @property
    def kinds(self) -> List[InputKind]:
        return [item.kind for item in self.inputs]


def kind_from_internal_type(internal_type: Optional[str]) -> InputKind:
    """
    Classify a Solidity ``internalType``.

    ``externalEuint64`` and the bare ``euint64`` spelling both map to
    ``EUINT64``; unknown or missing tags are ``PASSTHROUGH``.
    """
    if not internal_type:
        return InputKind.PASSTHROUGH
    tag = internal_type
    if tag.startswith(_EXTERNAL_PREFIX):
        tag = tag[len(_EXTERNAL_PREFIX):]
    return _ENCRYPTED_TAGS.get(tag.lower(), InputKind.PASSTHROUGH)


def find_function(abi: Sequence[AbiEntry], function_name: str) -> AbiEntry:
    """
    Look up a function descriptor by name.

    Overloads are not disambiguated: the first declaration wins.

    Raises:
        UnknownOperation: If no function named ``function_name`` exists.
    """
    for entry in abi:
        if entry.get("type", "function") == "function" and entry.get("name") == function_name:
            return entry
    raise UnknownOperation(
        f"Function '{function_name}' not found in ABI",
        details={"operation": function_name},
    )


def classify(abi: Sequence[AbiEntry], function_name: str) -> Classification:
    """
    Classify every declared input of ``function_name``.

    A last input declared as ``bytes inputProof`` is the ``PROOF`` slot when
    the function also declares encrypted inputs.

    Raises:
        UnknownOperation: If the function is not in the ABI.
    """
    entry = find_function(abi, function_name)
    declared = list(entry.get("inputs") or [])
    kinds = [kind_from_internal_type(item.get("internalType")) for item in declared]

    if (
        declared
        and any(kind.is_encrypted for kind in kinds)
        and declared[-1].get("type") == "bytes"
        and declared[-1].get("name") == _PROOF_NAME
    ):
        kinds[-1] = InputKind.PROOF

    return Classification(
        function_name=function_name,
        inputs=tuple(
            ClassifiedInput(
                index=index,
                name=item.get("name") or f"arg{index}",
                abi_type=item.get("type", ""),
                kind=kind,
            )
            for index, (item, kind) in enumerate(zip(declared, kinds))
        ),
    )


def coerce_plain_value(kind: InputKind, value: Any) -> Any:
    """
    Validate and normalize a cleartext value for an encrypted slot.

    Integers may arrive as JSON numbers or as decimal/``0x`` strings (for
    values beyond the float-safe range).

    Raises:
        ValueError: If the value does not fit the slot.
    """
    if kind is InputKind.EBOOL:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise ValueError(f"ebool expects a boolean, got {value!r}")

    if kind is InputKind.EADDRESS:
        if not is_valid_evm_address(value):
            raise ValueError(f"eaddress expects an EVM address, got {value!r}")
        return value

    bits = kind.bits
    if isinstance(value, bool):
        raise ValueError(f"{kind.value} expects an integer, got a boolean")
    if isinstance(value, str):
        text = value.strip()
        try:
            value = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
        except ValueError:
            raise ValueError(f"{kind.value} expects an integer, got {text!r}") from None
    if not isinstance(value, int):
        raise ValueError(f"{kind.value} expects an integer, got {type(value).__name__}")
    if not 0 <= value < 2 ** bits:
        raise ValueError(f"{value} does not fit in {kind.value}")
    return value


async def build_encrypted_args(
    create_input: Callable[[str, str], EncryptedInputBuilder],
    contract_address: str,
    user_address: str,
    values: Sequence[Any],
    classification: Classification,
) -> List[Any]:
    """
    Assemble the final positional arguments of a mutating call.

    ``values`` holds exactly one entry per non-proof input, in declaration
    order. Encrypted entries are fed to a single builder; after
    ``encrypt()`` each encrypted slot is replaced by its handle, passthrough
    values keep their position and identity, and the proof is the last
    argument, once.

    Example:
        inputs (uint256 a, externalEuint32 b, address c, bytes inputProof)
        values [1, 5, "0x..."]  ->  [1, <handle>, "0x...", <proof>]

    Raises:
        InvalidArguments: On a value count mismatch or an out-of-range value.
        EncryptionFailure: If the engine fails to encrypt.
    """
    slots = classification.value_slots
    if len(values) != len(slots):
        raise InvalidArguments(
            f"'{classification.function_name}' expects {len(slots)} values, got {len(values)}",
            details={"expected": len(slots), "received": len(values)},
        )

    if classification.encrypted_count == 0:
        return list(values)

    plain = []
    for slot, value in zip(slots, values):
        if not slot.kind.is_encrypted:
            continue
        try:
            plain.append((slot.kind, coerce_plain_value(slot.kind, value)))
        except ValueError as e:
            raise InvalidArguments(str(e), details={"argument": slot.name, "index": slot.index}) from e

    try:
        builder = create_input(contract_address, user_address)
        for kind, value in plain:
            getattr(builder, ENCODERS[kind])(value)
        encrypted = await builder.encrypt()
    except Exception as e:
        raise EncryptionFailure(
            f"Failed to encrypt inputs for '{classification.function_name}': {e}",
            details={"exception": type(e).__name__},
        ) from e

    if len(encrypted.handles) != len(plain):
        raise EncryptionFailure(
            f"Engine returned {len(encrypted.handles)} handles for {len(plain)} encrypted inputs"
        )

    handles = iter(encrypted.handles)
    args = [next(handles) if slot.kind.is_encrypted else value for slot, value in zip(slots, values)]
    args.append(encrypted.proof)
    return args
