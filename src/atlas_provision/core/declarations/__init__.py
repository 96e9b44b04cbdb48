# src/atlas_provision/core/declarations/__init__.py
"""
Declarações de infraestrutura: modelo em memória e loader de documentos.
"""

from .loader import load_declarations, parse_declarations
from .model import (
    Declaration,
    DeclarationKind,
    ExpansionDirective,
    LocalDecl,
    ModuleCallDecl,
    ModuleTree,
    OutputDecl,
    ResourceDecl,
    VariableDecl,
    iter_nodes,
)

__all__ = [
    "load_declarations",
    "parse_declarations",
    "Declaration",
    "DeclarationKind",
    "ExpansionDirective",
    "LocalDecl",
    "ModuleCallDecl",
    "ModuleTree",
    "OutputDecl",
    "ResourceDecl",
    "VariableDecl",
    "iter_nodes",
]
