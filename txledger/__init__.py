"""
txledger

A UTXO ledger core:
- UTXO pool with value-equality identifiers
- Per-transaction validity checks (existence, signatures, double claims,
  non-negative outputs, value conservation)
- Epoch processing that applies a mutually consistent subset of candidates
"""

__version__ = "0.1.0"
