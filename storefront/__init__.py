"""Storefront core: role-based authorization and stock-safe ordering."""

__version__ = "1.0.0"
