"""Tokenomics market-data backend."""
