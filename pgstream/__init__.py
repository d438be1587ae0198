"""Configuration loading, partition maintenance, metrics and async batching for a Postgres event stream."""

__version__ = "0.1.0"