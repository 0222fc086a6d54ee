"""hey-omarchy: bring-up helpers for an Arch Linux ThinkPad X1 13" desktop."""

__version__ = "0.1.0"
