"""
tradelog package

Local/remote synchronization layer for a personal trading journal:
owner-scoped Firestore persistence for trades, accounts, strategies, tags,
settings and profile, plus first-time migration of offline records.
"""
