# src/atlas_provision/core/run_context.py
"""
Contexto de execução de uma run do Atlas Provision.

O `RunContext` acompanha um plan ou apply do início ao fim e é o único canal
de observabilidade do engine: o engine não imprime nada, registra eventos
estruturados aqui (e, no apply, também no Manifest).

Princípios fundamentais:
    - Isolamento por execução (cada run possui seu próprio contexto)
    - O workspace é um valor explícito do contexto, nunca estado global
    - Eventos são estruturados e incluem sempre `run_id` e `address`

Invariantes:
    - `events` preserva a ordem de registro
    - Warnings são agrupados por endereço (instância ou declaração)
    - Registro de eventos é seguro sob o apply concorrente

Limites explícitos:
    - Não executa plan nem apply
    - Não persiste dados automaticamente
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class RunContext:
    """
    Contexto canônico de uma run.

    Campos:
        - run_id: identificador único da execução
        - created_at: timestamp UTC de criação
        - workspace: nome do workspace alvo
        - config: configuração efetiva do engine
        - meta: metadados livres (ex.: origem da execução)
    """

    run_id: str
    created_at: datetime
    workspace: str
    config: Dict[str, Any]
    meta: Dict[str, Any] = field(default_factory=dict)

    events: List[Dict[str, Any]] = field(default_factory=list, init=False)
    warnings: Dict[str, List[str]] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @classmethod
    def new(
        cls,
        *,
        workspace: str,
        config: Dict[str, Any],
        run_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> "RunContext":
        return cls(
            run_id=run_id or uuid.uuid4().hex,
            created_at=datetime.now(timezone.utc),
            workspace=workspace,
            config=config,
            meta=dict(meta or {}),
        )

    # -----------------------------
    # Logging & warnings
    # -----------------------------
    def log(self, *, address: str, level: str, message: str, **extra: Any) -> None:
        event = {
            "run_id": self.run_id,
            "workspace": self.workspace,
            "address": address,
            "level": level,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        event.update(extra)
        with self._lock:
            self.events.append(event)

    def add_warning(self, *, address: str, message: str) -> None:
        with self._lock:
            self.warnings.setdefault(address, []).append(message)

    def events_for(self, address: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [e for e in self.events if e.get("address") == address]
