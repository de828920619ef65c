"""Shared logging, configuration and retry helpers."""
