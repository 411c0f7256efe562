"""
Epoch file schema - JSON input for the command line.

An epoch file carries the starting pool and the candidate transactions:

    {
      "pool": [
        {"tx_hash": "0x..", "index": 0, "value": 10.0, "address": "0x<64-byte pubkey>"}
      ],
      "txs": [
        {
          "inputs":  [{"prev_tx_hash": "0x..", "output_index": 0, "signature": "0x.."}],
          "outputs": [{"value": 5.0, "address": "0x.."}],
          "tx_hash": "0x.."
        }
      ]
    }

`tx_hash` is optional; it is always computed from the transaction, and a
given value that does not match is rejected. Values must be finite.
Other top-level keys (such as the `accepted` list written by `txledger
epoch --output`) are ignored.
Models are validated with pydantic and converted to ledger types.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from txledger.core.state import UTXO, Transaction, TxInput, TxOutput, UTXOPool
from txledger.crypto import bytes_to_hex, hex_to_bytes


def _decode_hex(value):
    if isinstance(value, str):
        try:
            return hex_to_bytes(value)
        except ValueError as e:
            raise ValueError(f"invalid hex string: {value!r}") from e
    return value


# =============================================================================
# Models
# =============================================================================


class PoolEntryModel(BaseModel):
    tx_hash: bytes
    index: int = Field(ge=0)
    value: float = Field(allow_inf_nan=False)
    address: bytes

    @field_validator("tx_hash", "address", mode="before")
    @classmethod
    def decode_hex(cls, value):
        return _decode_hex(value)


class InputModel(BaseModel):
    prev_tx_hash: bytes
    output_index: int = Field(ge=0)
    signature: Optional[bytes] = None

    @field_validator("prev_tx_hash", "signature", mode="before")
    @classmethod
    def decode_hex(cls, value):
        return _decode_hex(value)


class OutputModel(BaseModel):
    value: float = Field(allow_inf_nan=False)
    address: bytes

    @field_validator("address", mode="before")
    @classmethod
    def decode_hex(cls, value):
        return _decode_hex(value)


class TransactionModel(BaseModel):
    inputs: List[InputModel] = Field(default_factory=list)
    outputs: List[OutputModel] = Field(default_factory=list)
    tx_hash: Optional[bytes] = None

    @field_validator("tx_hash", mode="before")
    @classmethod
    def decode_hex(cls, value):
        return _decode_hex(value)

    @model_validator(mode="after")
    def check_tx_hash(self):
        if self.tx_hash and self.tx_hash != self.build().compute_tx_hash():
            raise ValueError(
                f"tx_hash {bytes_to_hex(self.tx_hash)} does not match the transaction contents"
            )
        return self

    def build(self) -> Transaction:
        """Transaction from the file fields, without a hash."""
        return Transaction(
            inputs=[TxInput(i.prev_tx_hash, i.output_index, i.signature) for i in self.inputs],
            outputs=[TxOutput(o.value, o.address) for o in self.outputs],
        )

    def to_transaction(self) -> Transaction:
        tx = self.build()
        tx.finalize()
        return tx


class EpochFile(BaseModel):
    pool: List[PoolEntryModel] = Field(default_factory=list)
    txs: List[TransactionModel] = Field(default_factory=list)

    def to_pool(self) -> UTXOPool:
        pool = UTXOPool()
        for entry in self.pool:
            pool.add_utxo(UTXO(entry.tx_hash, entry.index), TxOutput(entry.value, entry.address))
        return pool

    def to_transactions(self) -> List[Transaction]:
        return [tx.to_transaction() for tx in self.txs]


# =============================================================================
# Load / Dump
# =============================================================================


def load_epoch_file(path: Path) -> EpochFile:
    """Parse and validate an epoch file. Raises pydantic.ValidationError."""
    return EpochFile.model_validate_json(Path(path).read_text())


def pool_to_json(pool: UTXOPool) -> List[dict]:
    """Pool entries in epoch-file form, sorted by (tx_hash, index)."""
    entries = []
    for utxo in pool.get_all_utxo():
        out = pool.get_tx_output(utxo)
        entries.append({
            "tx_hash": bytes_to_hex(utxo.tx_hash),
            "index": utxo.index,
            "value": out.value,
            "address": bytes_to_hex(out.address),
        })
    return entries


def transaction_to_json(tx: Transaction) -> dict:
    return {
        "inputs": [
            {
                "prev_tx_hash": bytes_to_hex(inp.prev_tx_hash),
                "output_index": inp.output_index,
                "signature": bytes_to_hex(inp.signature) if inp.signature else None,
            }
            for inp in tx.inputs
        ],
        "outputs": [
            {"value": out.value, "address": bytes_to_hex(out.address)}
            for out in tx.outputs
        ],
        "tx_hash": bytes_to_hex(tx.tx_hash),
    }
