"""Epoch-synchronized auto-voter for ve(3,3) gauge voting."""

__version__ = "0.1.0"
