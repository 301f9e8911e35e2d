"""Download and extract archives, locate binaries in them, and install them atomically."""

__version__ = "0.1.0"