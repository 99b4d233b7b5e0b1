"""Metrics-driven HTTP routing proxy with serverless fallback, built on aiohttp."""

__version__ = "0.1.0"