"""
Repository interfaces and their in-memory implementations.

Swap in a persistent implementation by satisfying the protocols in
``orthoiq.storage.base``.
"""
