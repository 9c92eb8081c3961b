"""Mempool Tracker - Classify pending Ethereum transactions and verify them once mined."""

__version__ = "0.1.0"
