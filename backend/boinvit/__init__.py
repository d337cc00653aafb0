"""Boinvit booking and payments backend."""

__version__ = "0.1.0"
