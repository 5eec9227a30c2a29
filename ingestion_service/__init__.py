"""Bootstrap and lifecycle layer for the API and exposure ingestion service."""

__version__ = "1.0.0"
