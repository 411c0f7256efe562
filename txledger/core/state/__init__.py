"""UTXO pool, transactions and the transaction handler"""
from txledger.core.state.utxo import UTXO, UTXOPool, UTXONotFoundError
from txledger.core.state.transaction import (
    Transaction,
    TxInput,
    TxOutput,
    create_transfer,
    create_coinbase,
    create_genesis_pool,
)
from txledger.core.state.handler import TxHandler, RejectReason, EpochReport

__all__ = [
    "UTXO",
    "UTXOPool",
    "UTXONotFoundError",
    "Transaction",
    "TxInput",
    "TxOutput",
    "create_transfer",
    "create_coinbase",
    "create_genesis_pool",
    "TxHandler",
    "RejectReason",
    "EpochReport",
]
