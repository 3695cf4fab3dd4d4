"""Typed repositories over the data-store capability."""
