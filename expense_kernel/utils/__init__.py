"""Utility functions for the expense kernel."""

from expense_kernel.utils.hashing import canonicalize_json, hash_payload, jsonable

__all__ = ["canonicalize_json", "hash_payload", "jsonable"]
