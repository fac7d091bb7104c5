"""Reward pool balance and the claim/distribution engine."""
