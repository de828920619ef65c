"""Adaptive playback-rate controller: skip silences by speeding playback up."""

__version__ = "0.1.0"
