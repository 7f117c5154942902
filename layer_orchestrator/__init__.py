"""Dependency-ordered deployment of infrastructure layers."""

__version__ = "0.1.0"
