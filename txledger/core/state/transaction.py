"""
Transaction - State transition in the txledger UTXO model.

Conceptual Background:
---------------------
A Transaction consumes inputs (UTXOs) and creates outputs (new UTXOs).

Each input references a specific UTXO and carries a signature:
- The UTXO identifier (prev_tx_hash + output_index)
- A signature by the owner of that UTXO over the input's signing hash

Each output names an owner (64-byte secp256k1 public key) and a value.

Signing:
-------
Input i signs SHA-256 of:

    prev_tx_hash_i || output_index_i || (value || address) for every output

so a signature binds the spend of one UTXO to the exact set of outputs, and
never covers its own signature field. The transaction hash covers every
input (signatures included) and every output; it is set by `finalize()` once
all inputs are signed.
"""

import struct
from dataclasses import dataclass, field
from typing import List, Optional

from txledger.core.state.utxo import UTXO, UTXOPool
from txledger.crypto import sha256, sign, short_hex


# =============================================================================
# Input Reference
# =============================================================================


@dataclass
class TxInput:
    """
    A transaction input - reference to a UTXO being spent.

    Attributes:
        prev_tx_hash: Transaction that created the UTXO
        output_index: Index in that transaction's outputs
        signature: Signature authorizing the spend (None until signed)
    """
    prev_tx_hash: bytes
    output_index: int
    signature: Optional[bytes] = None

    @property
    def utxo(self) -> UTXO:
        """The UTXO identifier this input references."""
        return UTXO(self.prev_tx_hash, self.output_index)

    def to_bytes(self) -> bytes:
        return (
            self.prev_tx_hash +
            self.output_index.to_bytes(4, byteorder="big") +
            (self.signature or b"")
        )


# =============================================================================
# Output
# =============================================================================


@dataclass(frozen=True)
class TxOutput:
    """
    A transaction output - value assigned to an owner.

    Negative values are representable; the handler rejects them at
    validation time, not here.

    Attributes:
        value: Amount of coin
        address: Owner's 64-byte public key
    """
    value: float
    address: bytes

    def to_bytes(self) -> bytes:
        return struct.pack(">d", self.value) + self.address


# =============================================================================
# Transaction
# =============================================================================


@dataclass
class Transaction:
    """
    A state transition that consumes inputs and creates outputs.

    Attributes:
        inputs: Ordered TxInputs being spent
        outputs: Ordered TxOutputs being created
        tx_hash: Content hash (set by finalize())
    """
    inputs: List[TxInput] = field(default_factory=list)
    outputs: List[TxOutput] = field(default_factory=list)
    tx_hash: bytes = field(default=b"")

    # =========================================================================
    # Building
    # =========================================================================

    def add_input(self, prev_tx_hash: bytes, output_index: int) -> None:
        self.inputs.append(TxInput(prev_tx_hash, output_index))

    def add_output(self, value: float, address: bytes) -> None:
        self.outputs.append(TxOutput(value, address))

    def remove_input(self, index: int) -> None:
        del self.inputs[index]

    def remove_input_utxo(self, utxo: UTXO) -> None:
        """Remove the first input that references `utxo`, if any."""
        for i, inp in enumerate(self.inputs):
            if inp.utxo == utxo:
                del self.inputs[i]
                return

    def add_signature(self, signature: bytes, index: int) -> None:
        self.inputs[index].signature = signature

    # =========================================================================
    # Accessors
    # =========================================================================

    def get_input(self, index: int) -> TxInput:
        return self.inputs[index]

    def get_output(self, index: int) -> TxOutput:
        return self.outputs[index]

    def num_inputs(self) -> int:
        return len(self.inputs)

    def num_outputs(self) -> int:
        return len(self.outputs)

    def get_hash(self) -> bytes:
        return self.tx_hash

    # =========================================================================
    # Hashing and Signing
    # =========================================================================

    def get_raw_data_to_sign(self, index: int) -> bytes:
        """
        Bytes that input `index` signs.

        Format: prev_tx_hash || output_index(4) || outputs

        Raises:
            IndexError: if there is no input at `index`
        """
        if not 0 <= index < len(self.inputs):
            raise IndexError(f"Input index {index} out of range")

        inp = self.inputs[index]
        parts = [inp.prev_tx_hash, inp.output_index.to_bytes(4, byteorder="big")]
        for out in self.outputs:
            parts.append(out.to_bytes())
        return b"".join(parts)

    def get_signing_hash(self, index: int) -> bytes:
        """32-byte hash signed by input `index`."""
        return sha256(self.get_raw_data_to_sign(index))

    def get_raw_tx(self) -> bytes:
        """
        Canonical bytes of the whole transaction.

        Format: inputs (hash || index(4) || signature) || outputs
        """
        parts = [inp.to_bytes() for inp in self.inputs]
        parts.extend(out.to_bytes() for out in self.outputs)
        return b"".join(parts)

    def compute_tx_hash(self) -> bytes:
        return sha256(self.get_raw_tx())

    def finalize(self) -> None:
        """Compute and set the transaction hash."""
        self.tx_hash = self.compute_tx_hash()

    def sign_input(self, index: int, private_key: bytes) -> None:
        """
        Sign a specific input.

        Args:
            index: Which input to sign
            private_key: Private key of the input's UTXO owner
        """
        self.add_signature(sign(self.get_signing_hash(index), private_key), index)

    # =========================================================================
    # Utility
    # =========================================================================

    def total_output_value(self) -> float:
        return sum(out.value for out in self.outputs)

    def __repr__(self) -> str:
        tx_id = short_hex(self.tx_hash) if self.tx_hash else "unfinalized"
        return f"Transaction(id={tx_id}, inputs={len(self.inputs)}, outputs={len(self.outputs)})"


# =============================================================================
# Factory Functions
# =============================================================================


def create_transfer(
    inputs: List[tuple],  # List of (UTXO, private_key)
    recipients: List[tuple],  # List of (public_key, value)
) -> Transaction:
    """
    Create a signed, finalized transfer transaction.

    Args:
        inputs: List of (UTXO, private_key) tuples
        recipients: List of (public_key, value) tuples

    Returns:
        Signed Transaction

    Note: Nothing here checks that inputs cover outputs; that is the
    handler's job.
    """
    tx = Transaction()
    for utxo, _ in inputs:
        tx.add_input(utxo.tx_hash, utxo.index)
    for address, value in recipients:
        tx.add_output(value, address)

    for i, (_, private_key) in enumerate(inputs):
        tx.sign_input(i, private_key)

    tx.finalize()
    return tx


def create_coinbase(recipient: bytes, value: float) -> Transaction:
    """
    Create an input-less transaction that pays `value` to `recipient`.

    Used to seed a genesis pool: its outputs are added to a pool directly,
    never through the handler.
    """
    tx = Transaction()
    tx.add_output(value, recipient)
    tx.finalize()
    return tx


def create_genesis_pool(allocations: List[tuple]) -> tuple:
    """
    Build an initial pool from (public_key, value) allocations.

    All allocations become outputs of one coinbase transaction, so each
    lands at UTXO(genesis_hash, position).

    Returns:
        (UTXOPool, genesis Transaction)
    """
    tx = Transaction()
    for address, value in allocations:
        tx.add_output(value, address)
    tx.finalize()

    pool = UTXOPool()
    for i, out in enumerate(tx.outputs):
        pool.add_utxo(UTXO(tx.tx_hash, i), out)
    return pool, tx
