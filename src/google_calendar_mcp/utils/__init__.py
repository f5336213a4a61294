"""Shared helpers (environment parsing, logging)."""
