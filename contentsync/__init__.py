"""Content sync engine: Git push webhooks to a relational content store."""

__version__ = "0.1.0"
