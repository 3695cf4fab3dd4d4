"""Signing-key resolution and bearer-token authentication."""
