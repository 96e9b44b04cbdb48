# src/atlas_provision/core/expressions/__init__.py
"""
Linguagem de expressões `${...}` do Atlas Provision.

Pacote dividido em:
    - parser: tokenização, AST imutável e análise estática de referências
    - functions: funções built-in sobre o modelo fechado de valores
    - evaluator: avaliação pura sobre escopos resolvidos
"""

from .evaluator import ExpressionEvaluator, InstanceObject, Scope
from .functions import FUNCTIONS, FunctionCallError, call_function
from .parser import (
    ExpressionSyntaxError,
    Node,
    Reference,
    collect_function_names,
    collect_references,
    parse_expression,
    parse_template,
)

__all__ = [
    "ExpressionEvaluator",
    "InstanceObject",
    "Scope",
    "FUNCTIONS",
    "FunctionCallError",
    "call_function",
    "ExpressionSyntaxError",
    "Node",
    "Reference",
    "collect_function_names",
    "collect_references",
    "parse_expression",
    "parse_template",
]
