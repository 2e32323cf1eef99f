"""Penny Coach: recurring-charge detection and budget pacing for bank exports."""

__version__ = "0.1.0"
