"""Shared helpers: configuration, log redaction, version."""
