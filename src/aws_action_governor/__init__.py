"""Governed execution of mutating AWS actions."""

__version__ = "0.1.0"
