"""Sluice: stateful, rate-aware collection of paginated APIs into an idempotent raw store."""

__version__ = "0.1.0"
