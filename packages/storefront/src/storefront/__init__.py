"""Storefront API - request metering, health aggregation and rate limiting."""

__version__ = "0.1.0"
