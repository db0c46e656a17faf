"""touchline: multi-tenant marketing event ingestion and multi-touch attribution."""

__version__ = "1.0.0"
