"""NearBuy: local-marketplace discovery and price comparison core."""

__version__ = "0.1.0"
