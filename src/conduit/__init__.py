"""Conduit — streaming bridge between a host process and external agents."""

__version__ = "0.1.0"
