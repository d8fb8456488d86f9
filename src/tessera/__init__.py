"""Tessera: routing, record mapping, token auth and a job queue for async APIs."""

__version__ = "0.1.0"
