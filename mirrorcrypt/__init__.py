"""Encrypted mirroring of directory trees."""

__version__ = '1.0.0'
