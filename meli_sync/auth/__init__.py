"""Marketplace OAuth credential lifecycle."""
