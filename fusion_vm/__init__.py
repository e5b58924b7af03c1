"""Fusion VM: GPU-passthrough guest arbitration and domain synthesis."""

__version__ = "0.1.0"
