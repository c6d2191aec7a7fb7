# src/pgsample/sync/__init__.py
"""Sync orchestration over the engine and the Postgres layer."""

from pgsample.sync.syncer import PostgresSyncer

__all__ = ["PostgresSyncer"]
