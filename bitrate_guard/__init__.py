"""Bitrate-driven OBS scene switching."""

__version__ = "1.2.0"
