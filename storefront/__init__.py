"""Storefront checkout settlement and affiliate attribution service."""

__version__ = "1.0.0"
