"""Order ingestion pipeline: broker consumer, PostgreSQL store and TTL cache."""

__version__ = "0.1.0"
