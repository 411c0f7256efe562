"""
UTXO - Unspent Transaction Output pool for txledger.

Conceptual Background:
---------------------
A UTXO is a discrete unit of value that can be spent exactly once.

The ledger state is a set of unspent outputs rather than a mapping of
account balances. Each entry is addressed by the hash of the transaction
that created it and the position of the output within that transaction:

    UTXO = (tx_hash, index)

The pool maps each identifier to the output record (owner public key and
value) it denotes. Spending removes the identifier; accepting a transaction
inserts one identifier per output.

Identifiers compare by value. Two UTXO objects built from equal hashes and
indexes are the same key no matter where they came from.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterator, List, Mapping, Union

from txledger.crypto import short_hex

if TYPE_CHECKING:
    from txledger.core.state.transaction import TxOutput


# =============================================================================
# Errors
# =============================================================================


class UTXONotFoundError(KeyError):
    """Raised when a UTXO is looked up or removed but is not in the pool."""

    def __init__(self, utxo: "UTXO"):
        super().__init__(utxo)
        self.utxo = utxo

    def __str__(self) -> str:
        return f"UTXO not in pool: {self.utxo!r}"


# =============================================================================
# UTXO Identifier
# =============================================================================


@dataclass(frozen=True, order=True)
class UTXO:
    """
    Identifier of an unspent output.

    Attributes:
        tx_hash: Hash of the transaction that created the output
        index: Position of the output within that transaction
    """
    tx_hash: bytes
    index: int

    def __post_init__(self):
        # bytearray is unhashable
        if isinstance(self.tx_hash, bytearray):
            object.__setattr__(self, "tx_hash", bytes(self.tx_hash))

    def __repr__(self) -> str:
        return f"UTXO(tx={short_hex(self.tx_hash)}, idx={self.index})"


# =============================================================================
# UTXO Pool
# =============================================================================


class UTXOPool:
    """
    Mutable mapping of UTXO identifiers to the outputs they denote.

    Every key denotes exactly one unspent output. Constructing a pool from
    another pool (or from a dict) copies the mapping, so neither side sees
    later inserts or removals by the other.
    """

    def __init__(self, utxos: Union["UTXOPool", Mapping[UTXO, "TxOutput"], None] = None):
        if isinstance(utxos, UTXOPool):
            utxos = utxos._utxos
        self._utxos: Dict[UTXO, "TxOutput"] = dict(utxos or {})

    # =========================================================================
    # Mutation
    # =========================================================================

    def add_utxo(self, utxo: UTXO, tx_out: "TxOutput") -> None:
        """Add `utxo` mapped to `tx_out`, replacing any existing mapping."""
        self._utxos[utxo] = tx_out

    def remove_utxo(self, utxo: UTXO) -> None:
        """Remove `utxo`. Raises UTXONotFoundError if it is not present."""
        try:
            del self._utxos[utxo]
        except KeyError:
            raise UTXONotFoundError(utxo) from None

    # =========================================================================
    # Lookup
    # =========================================================================

    def contains(self, utxo: UTXO) -> bool:
        return utxo in self._utxos

    def get_tx_output(self, utxo: UTXO) -> "TxOutput":
        """Output record for `utxo`. Raises UTXONotFoundError if absent."""
        try:
            return self._utxos[utxo]
        except KeyError:
            raise UTXONotFoundError(utxo) from None

    def get_all_utxo(self) -> List[UTXO]:
        """All identifiers currently in the pool, sorted by (tx_hash, index)."""
        return sorted(self._utxos)

    def total_value(self) -> float:
        return sum(out.value for out in self._utxos.values())

    def copy(self) -> "UTXOPool":
        return UTXOPool(self)

    # =========================================================================
    # Container protocol
    # =========================================================================

    def __contains__(self, utxo: object) -> bool:
        return utxo in self._utxos

    def __len__(self) -> int:
        return len(self._utxos)

    def __iter__(self) -> Iterator[UTXO]:
        return iter(self.get_all_utxo())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UTXOPool):
            return NotImplemented
        return self._utxos == other._utxos

    def __repr__(self) -> str:
        return f"UTXOPool(utxos={len(self._utxos)}, value={self.total_value()})"
