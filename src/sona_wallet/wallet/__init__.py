"""Wallet core: assets, session state, validation, building, signing and broadcast."""
