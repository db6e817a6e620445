"""Reference graph building and recursive expansion."""

from omnistudio_resolver.graph.expander import RecursiveExpander, count_expanded_children
from omnistudio_resolver.graph.models import GraphEdge, ReferenceGraph
from omnistudio_resolver.graph.reference_graph import ReferenceGraphBuilder, render_path

__all__ = [
    "GraphEdge",
    "RecursiveExpander",
    "ReferenceGraph",
    "ReferenceGraphBuilder",
    "count_expanded_children",
    "render_path",
]
