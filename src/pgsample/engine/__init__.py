# src/pgsample/engine/__init__.py
"""Sampling engine: row sampler, reference resolver, serializer and spans."""

from pgsample.engine.resolver import ReferenceResolver
from pgsample.engine.sampler import RowSampler, SampleBatch
from pgsample.engine.serializer import Serializer
from pgsample.engine.spans import NoOpSpan, SpanFactory

__all__ = ["NoOpSpan", "ReferenceResolver", "RowSampler", "SampleBatch", "Serializer", "SpanFactory"]
