"""EKATAN: interior design project and execution management."""

__version__ = "0.1.0"
