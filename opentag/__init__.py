"""OpenTag: PIN-protected medical ID tags carried on QR codes."""

__version__ = "1.0.0"
