# src/atlas_provision/core/variables/__init__.py
"""Resolução de variáveis de entrada (defaults + camadas de override)."""

from .resolver import ENV_PREFIX, VariableLayer, cli_layer, env_layer, file_layer, resolve_variables

__all__ = ["ENV_PREFIX", "VariableLayer", "cli_layer", "env_layer", "file_layer", "resolve_variables"]
