"""
Journal sync (Firestore-first).

This package is split into:
- ids / normalize / models: pure helpers (no store dependency) for deterministic testing
- service: write + subscription surface over an explicit store handle
- migration: batched upload of pre-existing local records
- live: owner-bound subscriptions that follow login/logout
"""
