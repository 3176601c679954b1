"""Core infrastructure: configuration, logging, canonical hashing, store, rate limiting and stage graph."""
