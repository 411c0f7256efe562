"""
Unit tests for transaction validation and epoch processing.

Tests cover:
1. Each validity check and its reject reason
2. Check ordering and purity
3. Conflict resolution within an epoch
4. Chained spends within an epoch
5. Pool isolation between caller and handler
6. Epoch reports and logging
"""

import logging
import math
import secrets

import pytest

from txledger.core.config import LedgerConfig
from txledger.core.state import (
    UTXO,
    Transaction,
    TxHandler,
    TxOutput,
    RejectReason,
    create_transfer,
    create_genesis_pool,
)
from txledger.crypto import generate_keypair


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def owner():
    return generate_keypair()


@pytest.fixture
def recipient():
    return generate_keypair()


@pytest.fixture
def genesis(owner):
    """Pool with one UTXO of value 10 owned by `owner`."""
    pool, tx = create_genesis_pool([(owner.public_key, 10.0)])
    return pool, UTXO(tx.tx_hash, 0)


@pytest.fixture
def handler(genesis):
    pool, _ = genesis
    return TxHandler(pool)


def spend(utxo, keypair, *recipients):
    return create_transfer(inputs=[(utxo, keypair.private_key)], recipients=list(recipients))


# =============================================================================
# Validity Checks
# =============================================================================


class TestValidity:
    """Tests for is_valid_tx / check_tx."""

    def test_valid_transfer(self, handler, genesis, owner, recipient):
        _, u = genesis
        tx = spend(u, owner, (recipient.public_key, 10.0))
        assert handler.is_valid_tx(tx)
        assert handler.check_tx(tx) is RejectReason.ACCEPTED

    def test_missing_utxo(self, handler, owner, recipient):
        tx = spend(UTXO(secrets.token_bytes(32), 0), owner, (recipient.public_key, 1.0))
        assert handler.check_tx(tx) is RejectReason.NOT_FOUND
        assert not handler.is_valid_tx(tx)

    def test_one_of_several_inputs_missing(self, owner, recipient):
        pool, genesis_tx = create_genesis_pool([(owner.public_key, 10.0)])
        handler = TxHandler(pool)
        tx = create_transfer(
            inputs=[
                (UTXO(genesis_tx.tx_hash, 0), owner.private_key),
                (UTXO(genesis_tx.tx_hash, 1), owner.private_key),
            ],
            recipients=[(recipient.public_key, 1.0)],
        )
        assert handler.check_tx(tx) is RejectReason.NOT_FOUND

    def test_signed_by_wrong_key(self, handler, genesis, recipient):
        _, u = genesis
        thief = generate_keypair()
        tx = spend(u, thief, (thief.public_key, 10.0))
        assert handler.check_tx(tx) is RejectReason.INVALID_SIGNATURE

    def test_unsigned_input(self, handler, genesis, recipient):
        _, u = genesis
        tx = Transaction()
        tx.add_input(u.tx_hash, u.index)
        tx.add_output(10.0, recipient.public_key)
        tx.finalize()
        assert handler.check_tx(tx) is RejectReason.INVALID_SIGNATURE

    def test_signature_over_other_outputs(self, handler, genesis, owner, recipient):
        """Changing outputs after signing invalidates the signature."""
        _, u = genesis
        tx = spend(u, owner, (owner.public_key, 10.0))
        tx.outputs[0] = TxOutput(10.0, recipient.public_key)
        tx.finalize()
        assert handler.check_tx(tx) is RejectReason.INVALID_SIGNATURE

    def test_signature_for_other_input_position(self, owner, recipient):
        pool, genesis_tx = create_genesis_pool([(owner.public_key, 5.0), (owner.public_key, 5.0)])
        handler = TxHandler(pool)
        tx = create_transfer(
            inputs=[
                (UTXO(genesis_tx.tx_hash, 0), owner.private_key),
                (UTXO(genesis_tx.tx_hash, 1), owner.private_key),
            ],
            recipients=[(recipient.public_key, 10.0)],
        )
        assert handler.is_valid_tx(tx)

        sig0 = tx.get_input(0).signature
        tx.add_signature(tx.get_input(1).signature, 0)
        tx.add_signature(sig0, 1)
        assert handler.check_tx(tx) is RejectReason.INVALID_SIGNATURE

    def test_double_claim_within_transaction(self, handler, genesis, owner, recipient):
        """Same UTXO twice is rejected even though it exists and is signed."""
        _, u = genesis
        tx = create_transfer(
            inputs=[(u, owner.private_key), (u, owner.private_key)],
            recipients=[(recipient.public_key, 20.0)],
        )
        assert handler.check_tx(tx) is RejectReason.DUPLICATE_CLAIM

    def test_double_claim_with_small_output(self, handler, genesis, owner, recipient):
        _, u = genesis
        tx = create_transfer(
            inputs=[(u, owner.private_key), (u, owner.private_key)],
            recipients=[(recipient.public_key, 1.0)],
        )
        assert not handler.is_valid_tx(tx)

    def test_negative_output(self, handler, genesis, owner, recipient):
        """Negative outputs are rejected regardless of input sufficiency."""
        _, u = genesis
        tx = spend(u, owner, (recipient.public_key, -5.0), (owner.public_key, 5.0))
        assert handler.check_tx(tx) is RejectReason.NEGATIVE_OUTPUT

    def test_zero_output_allowed(self, handler, genesis, owner, recipient):
        _, u = genesis
        tx = spend(u, owner, (recipient.public_key, 0.0), (owner.public_key, 10.0))
        assert handler.is_valid_tx(tx)

    def test_outputs_exceed_inputs(self, handler, genesis, owner, recipient):
        _, u = genesis
        tx = spend(u, owner, (recipient.public_key, 10.5))
        assert handler.check_tx(tx) is RejectReason.INSUFFICIENT_INPUT

    def test_equal_sums_accepted(self, handler, genesis, owner, recipient):
        _, u = genesis
        tx = spend(u, owner, (recipient.public_key, 6.0), (owner.public_key, 4.0))
        assert handler.is_valid_tx(tx)

    def test_fractional_sums_accepted(self, owner, recipient):
        """Ten inputs of 0.1 exactly cover an output of 1.0."""
        pool, genesis_tx = create_genesis_pool([(owner.public_key, 0.1) for _ in range(10)])
        handler = TxHandler(pool)
        tx = create_transfer(
            inputs=[(UTXO(genesis_tx.tx_hash, i), owner.private_key) for i in range(10)],
            recipients=[(recipient.public_key, 1.0)],
        )
        assert handler.check_tx(tx) is RejectReason.ACCEPTED

    def test_implicit_fee_accepted_by_default(self, handler, genesis, owner, recipient):
        _, u = genesis
        tx = spend(u, owner, (recipient.public_key, 9.0))
        assert handler.is_valid_tx(tx)

    def test_implicit_fee_rejected_when_disabled(self, genesis, owner, recipient):
        pool, u = genesis
        handler = TxHandler(pool, config=LedgerConfig(allow_implicit_fee=False))
        assert handler.check_tx(spend(u, owner, (recipient.public_key, 9.0))) is RejectReason.EXCESS_INPUT
        assert handler.is_valid_tx(spend(u, owner, (recipient.public_key, 10.0)))

    def test_no_inputs_no_value(self, handler, recipient):
        """An input-less transaction can only create zero value."""
        tx = Transaction()
        tx.add_output(1.0, recipient.public_key)
        tx.finalize()
        assert handler.check_tx(tx) is RejectReason.INSUFFICIENT_INPUT

        empty = Transaction()
        empty.finalize()
        assert handler.is_valid_tx(empty)


class TestNonFiniteValues:
    """NaN and infinities never pass the value checks."""

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_output_rejected(self, handler, genesis, owner, recipient, value):
        _, u = genesis
        tx = spend(u, owner, (recipient.public_key, value))
        assert handler.check_tx(tx) is RejectReason.NEGATIVE_OUTPUT

    def test_nan_output_among_valid_ones(self, handler, genesis, owner, recipient):
        _, u = genesis
        tx = spend(u, owner, (recipient.public_key, 5.0), (owner.public_key, math.nan))
        assert not handler.is_valid_tx(tx)

    @pytest.mark.parametrize("value", [math.nan, math.inf])
    def test_non_finite_pool_entry_cannot_be_spent(self, owner, recipient, value):
        pool, genesis_tx = create_genesis_pool([(owner.public_key, value)])
        handler = TxHandler(pool)
        tx = spend(UTXO(genesis_tx.tx_hash, 0), owner, (recipient.public_key, 1e12))
        assert handler.check_tx(tx) is RejectReason.INSUFFICIENT_INPUT

    def test_opposite_infinities_do_not_raise(self, owner, recipient):
        pool, genesis_tx = create_genesis_pool([(owner.public_key, math.inf), (owner.public_key, -math.inf)])
        handler = TxHandler(pool)
        tx = create_transfer(
            inputs=[(UTXO(genesis_tx.tx_hash, i), owner.private_key) for i in range(2)],
            recipients=[(recipient.public_key, 1.0)],
        )
        assert handler.check_tx(tx) is RejectReason.INSUFFICIENT_INPUT

    def test_overflowing_outputs_rejected(self, owner, recipient):
        pool, genesis_tx = create_genesis_pool([(owner.public_key, 1e308)])
        handler = TxHandler(pool)
        tx = spend(UTXO(genesis_tx.tx_hash, 0), owner, (recipient.public_key, 1e308), (owner.public_key, 1e308))
        assert handler.check_tx(tx) is RejectReason.INSUFFICIENT_INPUT

    def test_nan_output_cannot_mint_value(self, handler, genesis, owner):
        """A NaN output spent in the same epoch must not create coins."""
        pool, u = genesis
        k2 = generate_keypair()
        to_nan = spend(u, owner, (k2.public_key, math.nan))
        mint = spend(UTXO(to_nan.tx_hash, 0), k2, (k2.public_key, 1e12))

        assert handler.handle_txs([to_nan, mint]) == []
        assert handler.get_utxo_pool() == pool
        assert handler.get_utxo_pool().total_value() == 10.0


class TestCheckOrder:
    """First failed check wins."""

    def test_missing_before_negative(self, handler, owner, recipient):
        tx = spend(UTXO(secrets.token_bytes(32), 0), owner, (recipient.public_key, -1.0))
        assert handler.check_tx(tx) is RejectReason.NOT_FOUND

    def test_signature_before_duplicate(self, handler, genesis, recipient):
        _, u = genesis
        thief = generate_keypair()
        tx = create_transfer(
            inputs=[(u, thief.private_key), (u, thief.private_key)],
            recipients=[(recipient.public_key, 1.0)],
        )
        assert handler.check_tx(tx) is RejectReason.INVALID_SIGNATURE

    def test_negative_before_insufficient(self, handler, genesis, owner, recipient):
        _, u = genesis
        tx = spend(u, owner, (recipient.public_key, -1.0), (owner.public_key, 50.0))
        assert handler.check_tx(tx) is RejectReason.NEGATIVE_OUTPUT


class TestPurity:
    """Validation never mutates the pool."""

    def test_repeated_checks_agree(self, handler, genesis, owner, recipient):
        _, u = genesis
        good = spend(u, owner, (recipient.public_key, 10.0))
        bad = spend(u, owner, (recipient.public_key, 11.0))

        for _ in range(3):
            assert handler.is_valid_tx(good)
            assert not handler.is_valid_tx(bad)

    def test_pool_unchanged_after_check(self, handler, genesis, owner, recipient):
        pool, u = genesis
        handler.is_valid_tx(spend(u, owner, (recipient.public_key, 10.0)))
        assert handler.get_utxo_pool() == pool


# =============================================================================
# Epoch Processing
# =============================================================================


class TestHandleTxs:
    """Tests for handle_txs."""

    def test_conflicting_spends_first_wins(self, handler, genesis, owner):
        _, u = genesis
        k1, k2 = generate_keypair(), generate_keypair()
        t1 = spend(u, owner, (k1.public_key, 5.0))
        t2 = spend(u, owner, (k2.public_key, 5.0))

        accepted = handler.handle_txs([t1, t2])

        assert accepted == [t1]
        pool = handler.get_utxo_pool()
        assert not pool.contains(u)
        assert pool.contains(UTXO(t1.tx_hash, 0))
        assert not pool.contains(UTXO(t2.tx_hash, 0))
        assert len(pool) == 1

    def test_conflict_order_matters(self, genesis, owner):
        pool, u = genesis
        k1, k2 = generate_keypair(), generate_keypair()
        t1 = spend(u, owner, (k1.public_key, 5.0))
        t2 = spend(u, owner, (k2.public_key, 5.0))

        assert TxHandler(pool).handle_txs([t2, t1]) == [t2]

    def test_invalid_earlier_does_not_block_later(self, handler, genesis, owner, recipient):
        _, u = genesis
        greedy = spend(u, owner, (recipient.public_key, 100.0))
        honest = spend(u, owner, (recipient.public_key, 10.0))

        assert handler.handle_txs([greedy, honest]) == [honest]

    def test_chained_spends(self, handler, genesis, owner):
        _, u = genesis
        k2, k3 = generate_keypair(), generate_keypair()
        t1 = spend(u, owner, (k2.public_key, 10.0))
        t2 = spend(UTXO(t1.tx_hash, 0), k2, (k3.public_key, 10.0))

        accepted = handler.handle_txs([t1, t2])

        assert accepted == [t1, t2]
        pool = handler.get_utxo_pool()
        assert pool.get_all_utxo() == [UTXO(t2.tx_hash, 0)]
        assert pool.get_tx_output(UTXO(t2.tx_hash, 0)) == TxOutput(10.0, k3.public_key)

    def test_chained_spend_out_of_order_rejected(self, handler, genesis, owner):
        """A child listed before its parent is checked before the parent's outputs exist."""
        _, u = genesis
        k2, k3 = generate_keypair(), generate_keypair()
        t1 = spend(u, owner, (k2.public_key, 10.0))
        t2 = spend(UTXO(t1.tx_hash, 0), k2, (k3.public_key, 10.0))

        assert handler.handle_txs([t2, t1]) == [t1]
        assert handler.get_utxo_pool().contains(UTXO(t1.tx_hash, 0))

    def test_outputs_indexed_by_position(self, handler, genesis, owner):
        _, u = genesis
        keys = [generate_keypair() for _ in range(3)]
        tx = spend(u, owner, *[(k.public_key, 3.0) for k in keys])

        handler.handle_txs([tx])
        pool = handler.get_utxo_pool()
        for i, k in enumerate(keys):
            assert pool.get_tx_output(UTXO(tx.tx_hash, i)).address == k.public_key

    def test_rejected_leaves_pool_untouched(self, handler, genesis, owner, recipient):
        pool, u = genesis
        bad = spend(u, owner, (recipient.public_key, -1.0))

        assert handler.handle_txs([bad]) == []
        assert handler.get_utxo_pool() == pool

    def test_empty_batch(self, handler, genesis):
        pool, _ = genesis
        assert handler.handle_txs([]) == []
        assert handler.get_utxo_pool() == pool

    def test_accepts_any_iterable(self, handler, genesis, owner, recipient):
        _, u = genesis
        tx = spend(u, owner, (recipient.public_key, 10.0))
        assert handler.handle_txs(iter([tx])) == [tx]

    def test_result_preserves_input_order(self, owner):
        pool, genesis_tx = create_genesis_pool([(owner.public_key, 1.0) for _ in range(4)])
        handler = TxHandler(pool)
        txs = [
            spend(UTXO(genesis_tx.tx_hash, i), owner, (generate_keypair().public_key, 1.0))
            for i in range(4)
        ]
        txs[1].outputs[0] = TxOutput(2.0, owner.public_key)  # breaks signature

        assert handler.handle_txs(txs) == [txs[0], txs[2], txs[3]]

    def test_none_candidate_raises(self, handler):
        with pytest.raises(TypeError):
            handler.handle_txs([None])

    def test_unfinalized_tx_gets_hash(self, handler, genesis, owner, recipient):
        _, u = genesis
        tx = Transaction()
        tx.add_input(u.tx_hash, u.index)
        tx.add_output(10.0, recipient.public_key)
        tx.sign_input(0, owner.private_key)

        assert handler.handle_txs([tx]) == [tx]
        assert tx.tx_hash
        assert handler.get_utxo_pool().contains(UTXO(tx.tx_hash, 0))


class TestPoolIsolation:
    """Caller and handler never share pool state."""

    def test_caller_mutation_after_construction(self, genesis, owner, recipient):
        pool, u = genesis
        handler = TxHandler(pool)

        pool.remove_utxo(u)
        pool.add_utxo(UTXO(secrets.token_bytes(32), 0), TxOutput(1.0, owner.public_key))

        assert handler.get_utxo_pool().get_all_utxo() == [u]
        assert handler.is_valid_tx(spend(u, owner, (recipient.public_key, 10.0)))

    def test_handler_mutation_invisible_to_caller(self, genesis, owner, recipient):
        pool, u = genesis
        handler = TxHandler(pool)
        handler.handle_txs([spend(u, owner, (recipient.public_key, 10.0))])

        assert pool.get_all_utxo() == [u]

    def test_returned_pool_is_a_copy(self, handler, genesis):
        _, u = genesis
        snapshot = handler.get_utxo_pool()
        snapshot.remove_utxo(u)
        assert handler.get_utxo_pool().contains(u)


class TestEpochReport:
    """Tests for per-epoch reporting."""

    def test_report_counts(self, handler, genesis, owner, recipient):
        _, u = genesis
        t1 = spend(u, owner, (recipient.public_key, 5.0))
        t2 = spend(u, owner, (owner.public_key, 5.0))
        t3 = spend(UTXO(secrets.token_bytes(32), 0), owner, (recipient.public_key, 1.0))

        assert handler.last_report is None
        handler.handle_txs([t1, t2, t3])

        report = handler.last_report
        assert report.epoch == 1
        assert report.accepted == 1
        assert report.rejected == 2
        assert report.rejections == {RejectReason.NOT_FOUND: 2}
        assert report.pool_size == 1

    def test_epoch_counter_advances(self, handler):
        handler.handle_txs([])
        handler.handle_txs([])
        assert handler.epoch == 2
        assert handler.last_report.epoch == 2

    def test_rejections_logged(self, handler, genesis, owner, recipient, caplog):
        _, u = genesis
        bad = spend(u, owner, (recipient.public_key, 50.0))

        with caplog.at_level(logging.DEBUG, logger="txledger"):
            handler.handle_txs([bad])

        assert "INSUFFICIENT_INPUT" in caplog.text
        assert "0 accepted, 1 rejected" in caplog.text

    def test_repr(self, handler):
        assert repr(handler) == "TxHandler(epoch=0, utxos=1)"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
