"""bwctl — per-device bandwidth shaping for the local network segment."""

__version__ = "0.1.0"
