# src/atlas_provision/core/state/model.py
"""
Modelo persistido de state do Atlas Provision.

Estruturas:
    - Workspace → contexto explícito que isola conjuntos de state
    - StateRecord → última versão aplicada de uma instância
    - StateRecordSet → todos os records de um workspace + metadados

Documento JSON (version 1):

    {
      "version": 1,
      "serial": 3,
      "lineage": "<hex>",
      "workspace": "prod",
      "outputs": {...},
      "resources": [
        {"address": "...", "type": "...", "attributes": {...},
         "computed": {...}, "dependencies": [...], "schema_version": 1}
      ]
    }

Invariantes:
    - `serial` cresce a cada commit bem-sucedido
    - `lineage` é atribuída no primeiro commit e nunca muda depois
    - Versões de documento desconhecidas são rejeitadas (`StateVersionError`)
    - Valores são serializados com a marcação de sets de `core.values`
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..exceptions import StateVersionError
from ..values import from_json_value, to_json_value


STATE_VERSION = 1
DEFAULT_WORKSPACE = "default"

_WORKSPACE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class Workspace:
    """Nome de workspace validado; passado explicitamente a toda operação de state."""

    name: str = DEFAULT_WORKSPACE

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _WORKSPACE_RE.match(self.name):
            raise ValueError(f"nome de workspace inválido: {self.name!r}")

    def __str__(self) -> str:
        return self.name


@dataclass
class StateRecord:
    address: str
    resource_type: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    computed: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    schema_version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "type": self.resource_type,
            "attributes": to_json_value(self.attributes),
            "computed": to_json_value(self.computed),
            "dependencies": sorted(self.dependencies),
            "schema_version": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateRecord":
        return cls(
            address=data["address"],
            resource_type=data["type"],
            attributes=from_json_value(data.get("attributes") or {}),
            computed=from_json_value(data.get("computed") or {}),
            dependencies=list(data.get("dependencies") or []),
            schema_version=int(data.get("schema_version", 1)),
        )


@dataclass
class StateRecordSet:
    workspace: str
    version: int = STATE_VERSION
    serial: int = 0
    lineage: str = ""
    records: Dict[str, StateRecord] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)

    def get(self, address: str):
        return self.records.get(address)

    def addresses(self) -> List[str]:
        return sorted(self.records)

    def copy(self) -> "StateRecordSet":
        return StateRecordSet.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "serial": self.serial,
            "lineage": self.lineage,
            "workspace": self.workspace,
            "outputs": to_json_value(self.outputs),
            "resources": [self.records[a].to_dict() for a in sorted(self.records)],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateRecordSet":
        version = data.get("version")
        if isinstance(version, bool) or not isinstance(version, int) or version < 1 or version > STATE_VERSION:
            raise StateVersionError(
                message=f"versão de state não suportada: {version!r}",
                details={"version": version, "supported": STATE_VERSION, "workspace": data.get("workspace")},
                hint="Atualize o Atlas Provision para ler este state",
            )
        records = [StateRecord.from_dict(r) for r in data.get("resources") or []]
        return cls(
            workspace=data.get("workspace", DEFAULT_WORKSPACE),
            version=version,
            serial=int(data.get("serial", 0)),
            lineage=data.get("lineage") or "",
            records={r.address: r for r in records},
            outputs=from_json_value(data.get("outputs") or {}),
        )
