"""Tenant schema drift detection and gated migration service."""

__version__ = "0.1.0"
