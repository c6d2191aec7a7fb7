# src/pgsample/core/__init__.py
"""Core infrastructure: configuration, logging, canonical hashing, rate limiting, the FK graph."""
