"""Threshold remote signer building blocks: configuration, cosigner interfaces, key shard files, health tracking and nonce caching."""

__version__ = "3.0.0"

__all__ = [
    "address",
    "cli",
    "cond",
    "config",
    "cosigner",
    "health",
    "keys",
    "nonce_cache",
]