"""Cleanup registry: account records, marks and the cleanup state machine."""
