# src/atlas_provision/core/engine/__init__.py
"""
Engine do Atlas Provision.

Este pacote contém a implementação responsável por **planejar** e
**aplicar** mudanças de infraestrutura declarada em um workspace.

Componentes principais:
    - evaluate → estado desejado (expansão + avaliação de expressões)
    - planner  → diff contra o state e ordenação do changeset
    - applier  → execução concorrente do changeset contra um Provider
    - engine   → façade plan/apply com lock, commit e Manifest

Princípios fundamentais:
    - Plan é puro e determinístico para as mesmas entradas
    - Apply só altera state por meio de um commit atômico
    - Nenhuma decisão silenciosa é tomada durante o apply

Invariantes:
    - Uma instância só é aplicada após suas dependências
    - Cada instância recebe exatamente um resultado por apply
"""

from .applier import Applier, Provider, apply_outcomes
from .engine import Engine
from .evaluate import DesiredInstance, DesiredState, evaluate_desired_state, instance_address
from .planner import diff, ensure_plan_current
from .types import (
    Action,
    ApplyResult,
    InstanceOutcome,
    InstanceStatus,
    Plan,
    ResourceChange,
    load_plan,
    save_plan,
)

__all__ = [
    "Action",
    "Applier",
    "ApplyResult",
    "DesiredInstance",
    "DesiredState",
    "Engine",
    "InstanceOutcome",
    "InstanceStatus",
    "Plan",
    "Provider",
    "ResourceChange",
    "apply_outcomes",
    "diff",
    "ensure_plan_current",
    "evaluate_desired_state",
    "instance_address",
    "load_plan",
    "save_plan",
]
