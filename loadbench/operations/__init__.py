"""Concrete operations for the load-test engine."""

from .http import HttpConnector, RequestOperation, VersionOperation

__all__ = ["HttpConnector", "RequestOperation", "VersionOperation"]
