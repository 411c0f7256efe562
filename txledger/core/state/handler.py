"""
TxHandler - Transaction validation and epoch processing for txledger.

Conceptual Background:
---------------------
The handler owns a private UTXO pool. It answers two questions:

1. Is this transaction valid against the pool as it stands right now?
2. Given a batch of candidates for one epoch, which of them can be applied
   together, and what does the pool look like afterwards?

Validity:
--------
A transaction is valid iff, checked in this order:
1. Every input references a UTXO that is in the pool
2. Every input carries a valid signature by the referenced UTXO's owner
3. No UTXO is claimed more than once by the transaction
4. Every output value is finite and non-negative
5. sum(input values) >= sum(output values)

Any excess of inputs over outputs is an implicit fee. It is accepted and
credited nowhere unless the config disables implicit fees.

Epoch Processing:
----------------
Candidates are scanned once, in the order given. Each is checked against
the pool as already mutated by earlier acceptances, so:
- of two candidates claiming the same UTXO, the earlier valid one wins
- a candidate may spend outputs created earlier in the same epoch

Checking never mutates the pool, so a rejected candidate needs no rollback.
"""

import math
from collections import Counter
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, List, Optional

from txledger.core.config import LedgerConfig
from txledger.core.state.transaction import Transaction
from txledger.core.state.utxo import UTXO, UTXOPool
from txledger.crypto import short_hex, verify
from txledger.utils.logger import get_logger

logger = get_logger("state.handler")


# =============================================================================
# Validation Result
# =============================================================================


class RejectReason(IntEnum):
    """Outcome of checking one transaction; ACCEPTED means valid."""
    ACCEPTED = 0
    NOT_FOUND = 1
    INVALID_SIGNATURE = 2
    DUPLICATE_CLAIM = 3
    NEGATIVE_OUTPUT = 4
    INSUFFICIENT_INPUT = 5
    EXCESS_INPUT = 6


@dataclass
class EpochReport:
    """Summary of one handle_txs call."""
    epoch: int
    accepted: int = 0
    rejected: int = 0
    rejections: Dict[RejectReason, int] = field(default_factory=dict)
    pool_size: int = 0


def _total(values) -> float:
    """Exact float sum; NaN if any value is non-finite, inf on overflow."""
    values = list(values)
    if not all(math.isfinite(v) for v in values):
        return math.nan
    try:
        return math.fsum(values)
    except OverflowError:
        return math.inf


# =============================================================================
# Handler
# =============================================================================


class TxHandler:
    """
    Validates transactions and applies epochs against a private UTXO pool.

    Attributes:
        config: Validation policy
        epoch: Number of handle_txs calls completed
        last_report: EpochReport of the most recent handle_txs call
    """

    def __init__(self, utxo_pool: UTXOPool, config: Optional[LedgerConfig] = None):
        """
        Args:
            utxo_pool: Initial pool. Copied; later changes on either side
                are not shared.
            config: Validation policy. Defaults to LedgerConfig().
        """
        self._pool = UTXOPool(utxo_pool)
        self.config = config or LedgerConfig()
        self.epoch = 0
        self.last_report: Optional[EpochReport] = None

    def get_utxo_pool(self) -> UTXOPool:
        """Copy of the current pool, e.g. to seed the next epoch's handler."""
        return UTXOPool(self._pool)

    # =========================================================================
    # Validation
    # =========================================================================

    def check_tx(self, tx: Transaction) -> RejectReason:
        """
        Check `tx` against the current pool without modifying it.

        Returns:
            RejectReason.ACCEPTED if valid, otherwise the first failed check
        """
        claimed = [inp.utxo for inp in tx.inputs]

        for utxo in claimed:
            if not self._pool.contains(utxo):
                return RejectReason.NOT_FOUND

        for i, utxo in enumerate(claimed):
            owner = self._pool.get_tx_output(utxo).address
            signature = tx.get_input(i).signature
            if signature is None:
                return RejectReason.INVALID_SIGNATURE
            if not verify(tx.get_signing_hash(i), signature, owner):
                return RejectReason.INVALID_SIGNATURE

        if len(set(claimed)) != len(claimed):
            return RejectReason.DUPLICATE_CLAIM

        for out in tx.outputs:
            if not (math.isfinite(out.value) and out.value >= 0):
                return RejectReason.NEGATIVE_OUTPUT

        input_values = [self._pool.get_tx_output(utxo).value for utxo in claimed]
        input_sum = _total(input_values)
        output_sum = _total(out.value for out in tx.outputs)
        # NaN or inf in the pool must never cover an output
        if not (math.isfinite(input_sum) and input_sum >= output_sum):
            return RejectReason.INSUFFICIENT_INPUT
        if input_sum > output_sum and not self.config.allow_implicit_fee:
            return RejectReason.EXCESS_INPUT

        return RejectReason.ACCEPTED

    def is_valid_tx(self, tx: Transaction) -> bool:
        """True iff `tx` passes every check against the current pool."""
        return self.check_tx(tx) is RejectReason.ACCEPTED

    # =========================================================================
    # Epoch Processing
    # =========================================================================

    def handle_txs(self, possible_txs: Iterable[Transaction]) -> List[Transaction]:
        """
        Apply one epoch of candidate transactions.

        Candidates are taken in order; each valid one is applied before the
        next is checked. Rejected candidates are dropped without error.

        Args:
            possible_txs: Candidate transactions, in priority order

        Returns:
            Accepted transactions, in the order they were accepted

        Raises:
            TypeError: if a candidate is None
        """
        self.epoch += 1
        report = EpochReport(epoch=self.epoch)
        rejections: Counter = Counter()
        accepted: List[Transaction] = []

        for position, tx in enumerate(possible_txs):
            if tx is None:
                raise TypeError(f"Candidate {position} is None, expected a Transaction")

            reason = self.check_tx(tx)
            if reason is not RejectReason.ACCEPTED:
                rejections[reason] += 1
                logger.debug(f"Epoch {self.epoch}: rejected tx {self._label(tx)} ({reason.name})")
                continue

            self._apply(tx)
            accepted.append(tx)

        report.accepted = len(accepted)
        report.rejected = sum(rejections.values())
        report.rejections = dict(rejections)
        report.pool_size = len(self._pool)
        self.last_report = report

        logger.info(
            f"Epoch {self.epoch}: {report.accepted} accepted, {report.rejected} rejected, "
            f"pool={report.pool_size} UTXOs"
        )
        return accepted

    def _apply(self, tx: Transaction) -> None:
        """Spend the inputs of a validated `tx` and add its outputs."""
        for inp in tx.inputs:
            self._pool.remove_utxo(inp.utxo)

        if not tx.tx_hash:
            tx.finalize()

        tx_hash = tx.get_hash()
        for i, out in enumerate(tx.outputs):
            self._pool.add_utxo(UTXO(tx_hash, i), out)

        logger.debug(f"Applied tx {self._label(tx)} ({len(tx.inputs)} in, {len(tx.outputs)} out)")

    @staticmethod
    def _label(tx: Transaction) -> str:
        return short_hex(tx.get_hash()) if tx.get_hash() else "unfinalized"

    def __repr__(self) -> str:
        return f"TxHandler(epoch={self.epoch}, utxos={len(self._pool)})"
