"""Ledger core: configuration and state"""
