# src/atlas_provision/core/graph/__init__.py
"""Construção e validação do grafo de dependências entre declarações."""

from .builder import DependencyGraph, GraphNode, build_graph, qualify, resource_nodes

__all__ = ["DependencyGraph", "GraphNode", "build_graph", "qualify", "resource_nodes"]
