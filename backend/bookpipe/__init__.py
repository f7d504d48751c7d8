"""Book ingestion pipeline: uploaded documents → numbered reading pages."""

__version__ = "1.0.0"
