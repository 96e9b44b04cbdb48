# src/atlas_provision/core/engine/planner.py
"""
Planner/Differ do Atlas Provision.

Compara o estado desejado (instâncias avaliadas) com o state do workspace e
produz o changeset ordenado:

    - instância desejada sem record → create
    - atributos declarados diferentes (ou ainda desconhecidos) → update
    - atributos declarados iguais → no-op
    - record sem instância desejada → destroy

Ordem do changeset:
    - create/update/no-op em ordem topológica (dependências primeiro;
      dentro de uma declaração, pela chave da instância)
    - destroy em ordem topológica reversa, usando as dependências
      registradas em state (dependentes são destruídos primeiro)
    - update de uma instância que deixou de referenciar um record órfão
      leva as dependências anteriores em `prior_dependencies`, para que
      o destroy desse record aguarde o update

Invariantes:
    - Mesmas entradas → mesmo plano (mesmo fingerprint)
    - Atributos calculados pelo provider nunca forçam update
    - Replanejar logo após um apply bem-sucedido produz apenas no-op

Limites explícitos:
    - Não avalia expressões (recebe `DesiredState` pronto)
    - Não executa o plano
"""

from __future__ import annotations

import heapq
from typing import Dict, List, Set

from ..exceptions import StalePlanError
from ..state.model import StateRecord, StateRecordSet
from ..values import values_equal
from .evaluate import DesiredState
from .types import Action, Plan, ResourceChange


def _destroy_order(records: Dict[str, StateRecord]) -> List[str]:
    """Ordem reversa de criação entre os records a destruir."""
    addresses = set(records)
    deps: Dict[str, Set[str]] = {a: set(records[a].dependencies) & addresses for a in addresses}
    dependents: Dict[str, List[str]] = {a: [] for a in addresses}
    for a, ds in deps.items():
        for d in ds:
            dependents[d].append(a)

    remaining = {a: len(ds) for a, ds in deps.items()}
    ready = [a for a, n in remaining.items() if n == 0]
    heapq.heapify(ready)
    creation: List[str] = []
    while ready:
        a = heapq.heappop(ready)
        creation.append(a)
        for child in dependents[a]:
            remaining[child] -= 1
            if remaining[child] == 0:
                heapq.heappush(ready, child)

    # state inconsistente (ciclo registrado): sobras em ordem estável
    creation.extend(sorted(addresses - set(creation)))
    return list(reversed(creation))


def diff(desired: DesiredState, state: StateRecordSet, *, workspace: str) -> Plan:
    """
    Calcula o changeset entre estado desejado e state persistido.

    Args:
        desired (DesiredState): Instâncias e outputs avaliados.
        state (StateRecordSet): State atual do workspace.
        workspace (str): Nome do workspace alvo.

    Returns:
        Plan: Changeset ordenado com a identidade do state de origem.
    """
    changes: List[ResourceChange] = []

    for inst in desired.ordered():
        record = state.get(inst.address)
        if record is None:
            action = Action.CREATE
            before = None
            computed: Dict = {}
            prior: List[str] = []
        else:
            before = record.attributes
            computed = record.computed
            prior = sorted(record.dependencies)
            action = Action.NOOP if values_equal(before, inst.attributes) else Action.UPDATE
        changes.append(
            ResourceChange(
                address=inst.address,
                action=action,
                resource_type=inst.resource_type,
                before=before,
                after=inst.attributes,
                computed=computed,
                dependencies=list(inst.dependencies),
                prior_dependencies=prior,
            )
        )

    orphaned = {a: r for a, r in state.records.items() if a not in desired.instances}
    for address in _destroy_order(orphaned):
        record = orphaned[address]
        changes.append(
            ResourceChange(
                address=address,
                action=Action.DESTROY,
                resource_type=record.resource_type,
                before=record.attributes,
                after=None,
                computed=record.computed,
                dependencies=sorted(record.dependencies),
            )
        )

    return Plan(
        workspace=workspace,
        changes=changes,
        outputs=dict(desired.outputs),
        state_serial=state.serial,
        state_lineage=state.lineage,
    )


def ensure_plan_current(plan: Plan, state: StateRecordSet) -> None:
    """
    Garante que o plano foi calculado contra o state atual.

    Raises:
        StalePlanError: Se `serial` ou `lineage` do state mudaram desde o plan.
    """
    if plan.workspace != state.workspace or plan.state_serial != state.serial or plan.state_lineage != state.lineage:
        raise StalePlanError(
            message=f"plano desatualizado para o workspace {plan.workspace!r}",
            details={
                "workspace": plan.workspace,
                "plan_serial": plan.state_serial,
                "state_serial": state.serial,
                "plan_lineage": plan.state_lineage,
                "state_lineage": state.lineage,
            },
            hint="Execute um novo plan antes do apply",
        )
