# src/atlas_provision/core/engine/types.py
"""
Tipos canônicos de plan e apply do Atlas Provision.

Componentes principais:
    - Action → ação planejada para uma instância (create, update, destroy, no-op)
    - InstanceStatus → estado final de uma instância no apply
    - ResourceChange → uma entrada do changeset
    - Plan → changeset ordenado de um workspace, com fingerprint
    - InstanceOutcome / ApplyResult → resultado de um apply

Princípios fundamentais:
    - Tipos são estáveis e serializáveis
    - Valores desconhecidos no plano são marcados explicitamente
      (`{"__unknown__": true}`) e nunca persistidos em state
    - Nenhuma lógica de execução vive neste módulo

Invariantes:
    - Enums possuem valores textuais canônicos
    - `Plan.fingerprint` depende apenas do conteúdo do plano
    - `Plan.from_dict(plan.to_dict())` reproduz o mesmo fingerprint

Limites explícitos:
    - Não calcula planos
    - Não executa providers
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..config.hashing import compute_hash
from ..errors import AtlasErrorPayload
from ..values import from_plan_value, to_plan_value


PLAN_FORMAT_VERSION = 1


class Action(str, Enum):
    """
    Ação planejada para uma instância.

    Os valores são strings para facilitar serialização em JSON,
    persistência em Manifest e inspeção humana do plano.
    """

    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"
    NOOP = "no-op"


class InstanceStatus(str, Enum):
    """Estado final de uma instância após o apply."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ResourceChange:
    """
    Entrada do changeset.

    Campos:
        - address: endereço da instância
        - action: ação planejada
        - resource_type: tipo do resource (repassado ao provider)
        - before: atributos declarados no state (None para create)
        - after: atributos desejados (None para destroy); podem conter UNKNOWN
        - computed: atributos calculados pelo provider no state anterior
        - dependencies: endereços de instância dos quais esta depende
          (no destroy, os registrados em state)
        - prior_dependencies: dependências registradas em state para uma
          instância que continua desejada (vazio em create e destroy)
    """

    address: str
    action: Action
    resource_type: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    computed: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    prior_dependencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "action": self.action.value,
            "type": self.resource_type,
            "before": to_plan_value(self.before),
            "after": to_plan_value(self.after),
            "computed": to_plan_value(self.computed),
            "dependencies": list(self.dependencies),
            "prior_dependencies": list(self.prior_dependencies),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceChange":
        return cls(
            address=data["address"],
            action=Action(data["action"]),
            resource_type=data["type"],
            before=from_plan_value(data.get("before")),
            after=from_plan_value(data.get("after")),
            computed=from_plan_value(data.get("computed") or {}),
            dependencies=list(data.get("dependencies") or []),
            prior_dependencies=list(data.get("prior_dependencies") or []),
        )


@dataclass(frozen=True)
class Plan:
    """
    Changeset ordenado de um workspace.

    `state_serial` e `state_lineage` identificam o state contra o qual o
    plano foi calculado; o apply recusa o plano se o state mudou.
    `mode` é `apply` (reconciliação) ou `destroy` (remove todos os records).
    """

    workspace: str
    changes: List[ResourceChange]
    outputs: Dict[str, Any] = field(default_factory=dict)
    state_serial: int = 0
    state_lineage: str = ""
    mode: str = "apply"

    def _content(self) -> Dict[str, Any]:
        return {
            "format_version": PLAN_FORMAT_VERSION,
            "workspace": self.workspace,
            "mode": self.mode,
            "state_serial": self.state_serial,
            "state_lineage": self.state_lineage,
            "changes": [c.to_dict() for c in self.changes],
            "outputs": to_plan_value(self.outputs),
        }

    @property
    def fingerprint(self) -> str:
        return compute_hash(self._content())

    def change_for(self, address: str) -> Optional[ResourceChange]:
        for c in self.changes:
            if c.address == address:
                return c
        return None

    def has_changes(self) -> bool:
        return any(c.action is not Action.NOOP for c in self.changes)

    def summary(self) -> Dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        data = self._content()
        data["fingerprint"] = self.fingerprint
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        return cls(
            workspace=data["workspace"],
            changes=[ResourceChange.from_dict(c) for c in data.get("changes") or []],
            outputs=from_plan_value(data.get("outputs") or {}),
            state_serial=int(data.get("state_serial", 0)),
            state_lineage=data.get("state_lineage", ""),
            mode=data.get("mode", "apply"),
        )


def save_plan(plan: Plan, path: Union[str, Path]) -> None:
    """Persiste o plano em JSON determinístico."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(plan.to_dict(), ensure_ascii=False, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def load_plan(path: Union[str, Path]) -> Plan:
    """
    Restaura um plano salvo por `save_plan`.

    Raises:
        ValueError: Se o fingerprint gravado não corresponde ao conteúdo
            (arquivo editado manualmente ou corrompido).
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    plan = Plan.from_dict(data)
    recorded = data.get("fingerprint")
    if recorded is not None and recorded != plan.fingerprint:
        raise ValueError(f"fingerprint do plano não confere: {path}")
    return plan


@dataclass(frozen=True)
class InstanceOutcome:
    """Resultado de uma instância no apply."""

    address: str
    action: Action
    status: InstanceStatus
    attributes: Optional[Dict[str, Any]] = None
    computed: Dict[str, Any] = field(default_factory=dict)
    error: Optional[AtlasErrorPayload] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "action": self.action.value,
            "status": self.status.value,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class ApplyResult:
    """
    Resultado agregado de um apply.

    Campos:
        - outcomes: resultado por endereço (inclui no-op como success)
        - state: state comitado ao final
        - canceled: True se o apply foi interrompido
        - manifest: Manifest da run (rastreabilidade)
    """

    outcomes: Dict[str, InstanceOutcome]
    state: Any = None
    canceled: bool = False
    manifest: Any = None

    def _with(self, status: InstanceStatus) -> List[str]:
        return [a for a, o in self.outcomes.items() if o.status is status]

    @property
    def succeeded(self) -> List[str]:
        return self._with(InstanceStatus.SUCCESS)

    @property
    def failed(self) -> List[str]:
        return self._with(InstanceStatus.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._with(InstanceStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped and not self.canceled

    def summary(self) -> Dict[str, Any]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "canceled": self.canceled,
        }

    def errors(self) -> Dict[str, Dict[str, Any]]:
        return {a: o.error.to_dict() for a, o in self.outcomes.items() if o.error is not None}
