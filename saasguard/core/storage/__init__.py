"""Persistence contract, records and the in-memory reference store.

Import from the submodules directly: ``storage.base`` for the
``GovernanceStore`` protocol, ``storage.records`` for catalog records and
``storage.memory`` for ``InMemoryStore``.
"""
