"""Stocklight: multi-warehouse stock health and replenishment tickets."""

__version__ = "0.1.0"
