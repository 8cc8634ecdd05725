"""Namco C139 serial interface controller models with a TCP ring link."""

__version__ = "0.1.0"
__all__ = ["fifo", "link", "c139", "legacy"]