"""Logging setup, JSON Lines error log and the error notification sink."""
