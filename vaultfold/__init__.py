"""Replay vault event logs into canonical state and estimate forward APY."""

__version__ = "0.1.0"
