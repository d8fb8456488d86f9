"""Routing, middleware and dispatch."""

from tessera.http.dispatcher import Dispatcher, Middleware
from tessera.http.request import Request
from tessera.http.routing import Route, Router

__all__ = ["Dispatcher", "Middleware", "Request", "Route", "Router"]
