# src/atlas_provision/core/traceability/manifest.py
"""
Manifest v1 — registro auditável de um apply no Atlas Provision.

Cada apply gera um Manifest contendo:
    - identificação do apply (run_id, início, versão do engine, workspace)
    - identidade das entradas: hash da config efetiva e fingerprint do plano
    - a situação de cada instância tocada, indexada pelo endereço
    - a sequência de eventos na ordem em que o applier os observou

Regras:
    - Eventos só entram no log por chamadas explícitas (create_manifest não gera nenhum)
    - Timestamps são gravados em UTC, formato ISO-8601
    - A persistência usa JSON com chaves ordenadas, então dois saves do mesmo
      Manifest produzem bytes idênticos
    - As funções de mutação aceitam `AtlasManifest` ou o dicionário equivalente;
      no segundo caso o dicionário recebido é atualizado in-place

Fora do escopo deste módulo:
    - Executar operações de provider
    - Escolher fail-fast ou cancelamento
    - Sincronização entre threads: somente a thread de coordenação do applier escreve aqui
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union


def _utc(dt: datetime) -> datetime:
    """Timestamps sem tzinfo são tratados como UTC; os demais são convertidos."""
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def _iso(dt: datetime) -> str:
    return _utc(dt).isoformat()


def _ms_between(start: datetime, end: datetime) -> int:
    """Duração em milissegundos; nunca negativa."""
    s = _utc(start)
    e = _utc(end)
    return max(0, int((e - s).total_seconds() * 1000))


@dataclass
class AtlasManifest:
    """
    Estrutura em memória do Manifest.

    `run` e `inputs` são fixados na criação; `instances` e `events` crescem
    durante o apply; `summary` só é preenchido por `run_finished`.
    Tudo aqui é serializável em JSON e `from_dict(to_dict())` reconstrói
    um Manifest equivalente.
    """

    run: Dict[str, Any]
    inputs: Dict[str, Any]
    instances: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Cópia serializável e independente do estado interno."""
        return {
            "run": dict(self.run),
            "inputs": dict(self.inputs),
            "instances": {k: dict(v) for k, v in self.instances.items()},
            "events": [dict(e) for e in self.events],
            "summary": dict(self.summary),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AtlasManifest":
        """
        Reconstrói um Manifest a partir de sua representação em dicionário.

        A reconstrução é permissiva e estrutural: campos ausentes são
        inicializados vazios e não há validação semântica.
        """
        return cls(
            run=dict(data.get("run", {})),
            inputs=dict(data.get("inputs", {})),
            instances={k: dict(v) for k, v in (data.get("instances", {}) or {}).items()},
            events=[dict(e) for e in (data.get("events", []) or [])],
            summary=dict(data.get("summary", {}) or {}),
        )


def create_manifest(
    *,
    run_id: str,
    started_at: datetime,
    atlas_version: str,
    workspace: str,
    config_hash: str,
    plan_fingerprint: str,
) -> AtlasManifest:
    """
    Abre o Manifest de um apply.

    O log de eventos nasce vazio: quem registra o progresso é o applier,
    chamando `instance_started` e as funções correlatas.

    `started_at` é convertido para UTC antes de ser gravado em `run`.
    """
    started_at = _utc(started_at)
    return AtlasManifest(
        run={
            "run_id": run_id,
            "started_at": _iso(started_at),
            "atlas_version": atlas_version,
            "workspace": workspace,
        },
        inputs={
            "config_hash": config_hash,
            "plan_fingerprint": plan_fingerprint,
        },
        instances={},
        events=[],
    )


def _unwrap(manifest: Union[AtlasManifest, Dict[str, Any]]) -> Tuple[AtlasManifest, bool]:
    """Devolve o Manifest a mutar e se a entrada era um dicionário (ver `_sync`)."""
    if isinstance(manifest, AtlasManifest):
        return manifest, False
    return AtlasManifest.from_dict(manifest), True


def _sync(manifest: Union[AtlasManifest, Dict[str, Any]], target: AtlasManifest, was_dict: bool) -> None:
    if was_dict:
        manifest.clear()
        manifest.update(target.to_dict())


def add_event(
    manifest: Union[AtlasManifest, Dict[str, Any]],
    *,
    event_type: str,
    ts: datetime,
    address: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Acrescenta um evento ao final do log.

    Sem `address`, o evento vale para o apply inteiro (ex.: `apply_canceled`)
    e a chave não aparece no registro; o mesmo vale para `payload`.
    """
    ts = _utc(ts)
    target, was_dict = _unwrap(manifest)
    ev: Dict[str, Any] = {"event_type": event_type, "timestamp": _iso(ts)}
    if address is not None:
        ev["address"] = address
    if payload is not None:
        ev["payload"] = payload
    target.events.append(ev)
    _sync(manifest, target, was_dict)


def instance_started(
    manifest: Union[AtlasManifest, Dict[str, Any]],
    *,
    address: str,
    action: str,
    ts: datetime,
) -> None:
    """Marca a instância como `running` e registra `instance_started`."""
    ts = _utc(ts)
    target, was_dict = _unwrap(manifest)
    target.instances.setdefault(address, {})
    target.instances[address].update(
        {
            "address": address,
            "action": action,
            "status": "running",
            "started_at": _iso(ts),
        }
    )
    add_event(target, event_type="instance_started", ts=ts, address=address, payload={"action": action})
    _sync(manifest, target, was_dict)


def instance_finished(
    manifest: Union[AtlasManifest, Dict[str, Any]],
    *,
    address: str,
    ts: datetime,
    action: str,
    status: str = "success",
) -> None:
    """
    Registra a conclusão de uma instância.

    A duração é calculada a partir de `started_at`, quando presente;
    instâncias no-op são registradas sem início (duração zero).
    """
    ts = _utc(ts)
    target, was_dict = _unwrap(manifest)
    s = target.instances.setdefault(address, {"address": address})
    started_iso = s.get("started_at")
    started_dt = datetime.fromisoformat(started_iso) if started_iso else ts
    s.update(
        {
            "action": action,
            "status": status,
            "finished_at": _iso(ts),
            "duration_ms": _ms_between(started_dt, ts),
        }
    )
    add_event(
        target,
        event_type="instance_finished",
        ts=ts,
        address=address,
        payload={"action": action, "status": status, "duration_ms": s["duration_ms"]},
    )
    _sync(manifest, target, was_dict)


def instance_failed(
    manifest: Union[AtlasManifest, Dict[str, Any]],
    *,
    address: str,
    ts: datetime,
    error: Dict[str, Any],
) -> None:
    """
    Registra a falha de uma instância.

    `error` é a forma serializada de um `AtlasErrorPayload`.
    """
    ts = _utc(ts)
    target, was_dict = _unwrap(manifest)
    s = target.instances.setdefault(address, {"address": address})
    s.update({"status": "failed", "finished_at": _iso(ts), "error": error})
    add_event(target, event_type="instance_failed", ts=ts, address=address, payload={"error": error})
    _sync(manifest, target, was_dict)


def instance_skipped(
    manifest: Union[AtlasManifest, Dict[str, Any]],
    *,
    address: str,
    action: str,
    ts: datetime,
    error: Dict[str, Any],
) -> None:
    """Registra uma instância não tentada (dependência falhou ou apply interrompido)."""
    ts = _utc(ts)
    target, was_dict = _unwrap(manifest)
    s = target.instances.setdefault(address, {"address": address})
    s.update({"action": action, "status": "skipped", "finished_at": _iso(ts), "error": error})
    add_event(target, event_type="instance_skipped", ts=ts, address=address, payload={"reason": error.get("type")})
    _sync(manifest, target, was_dict)


def run_finished(
    manifest: Union[AtlasManifest, Dict[str, Any]],
    *,
    ts: datetime,
    summary: Dict[str, Any],
) -> None:
    """Registra o resumo final e o evento `run_finished`."""
    ts = _utc(ts)
    target, was_dict = _unwrap(manifest)
    target.summary = dict(summary)
    target.run["finished_at"] = _iso(ts)
    add_event(target, event_type="run_finished", ts=ts, payload=dict(summary))
    _sync(manifest, target, was_dict)


def save_manifest(manifest: Union[AtlasManifest, Dict[str, Any]], path: Path) -> None:
    """
    Persiste o Manifest em JSON determinístico (indentação fixa, chaves ordenadas).

    Diretórios intermediários são criados; um arquivo existente é sobrescrito.
    """
    data = manifest.to_dict() if isinstance(manifest, AtlasManifest) else manifest
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True), encoding="utf-8")


def load_manifest(path: Path) -> AtlasManifest:
    """
    Carrega um Manifest persistido por `save_manifest`.

    Raises:
        FileNotFoundError: Se o arquivo não existir.
        json.JSONDecodeError: Em caso de JSON inválido.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return AtlasManifest.from_dict(data)
