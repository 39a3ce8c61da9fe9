"""capman: periodic investment into a target portfolio."""

__version__ = "0.1.0"
