"""Reward computation and the session/pending ledger."""
