"""tilo - a personal activity timer daemon."""

__version__ = "0.1.0"
