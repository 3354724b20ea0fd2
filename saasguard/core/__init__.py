"""Governance core: events, storage, detection, policies and access reviews."""
