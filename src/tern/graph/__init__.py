"""tern.graph — Resource graph."""

from tern.graph.graph import DeferredOutput, DeferredRef, Graph, ResourceRecord
from tern.graph.build import DecoratorContext, build
from tern.graph.ids import logical_id

__all__ = [
    "DeferredOutput",
    "DeferredRef",
    "Graph",
    "ResourceRecord",
    "DecoratorContext",
    "build",
    "logical_id",
]
