# src/atlas_provision/core/expansion/__init__.py
"""Expansão de declarações (`count` / `for_each`) em instâncias endereçáveis."""

from .expander import NO_KEY, ExpandedInstance, InstanceKey, expand, expand_count, expand_for_each

__all__ = ["NO_KEY", "ExpandedInstance", "InstanceKey", "expand", "expand_count", "expand_for_each"]
