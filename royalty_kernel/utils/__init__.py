"""Utility functions for the royalty kernel."""

from royalty_kernel.utils.hashing import canonicalize_json, hash_payload

__all__ = ["canonicalize_json", "hash_payload"]
