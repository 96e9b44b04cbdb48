# src/atlas_provision/core/state/store.py
"""
State Store do Atlas Provision.

Backends:
    - LocalStateStore → `<root>/<workspace>/state.json` + `<root>/<workspace>/state.lock`
    - InMemoryStateStore → dicionário por processo (testes, execuções efêmeras)

Contrato comum (`StateBackend`):
    - load(workspace) → StateRecordSet (vazio se o workspace ainda não existe)
    - lock(workspace) → context manager exclusivo por workspace; um segundo
      pedido falha imediatamente com `LockConflictError` (retryable)
    - commit(workspace, state) → grava atomicamente e devolve o state com
      `serial` incrementado
    - list_workspaces() / delete_workspace(workspace)

Decisões arquiteturais:
    - O lock local é um arquivo criado com O_CREAT | O_EXCL; o conteúdo
      identifica o detentor (run_id, pid, timestamp)
    - O lock é liberado em qualquer caminho de saída do `with`
    - O commit local escreve em arquivo temporário e usa `os.replace`;
      falha no meio do commit preserva o state anterior

Limites explícitos:
    - Não há backend remoto nesta versão (o protocolo é o ponto de extensão)
    - Locks órfãos (processo morto) exigem remoção manual do arquivo
"""

from __future__ import annotations

import json
import os
import shutil
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Union

from ..exceptions import LockConflictError, StateVersionError, WorkspaceNotEmptyError
from .model import StateRecordSet, Workspace


STATE_FILE = "state.json"
LOCK_FILE = "state.lock"


class StateBackend(Protocol):
    def load(self, workspace: Workspace) -> StateRecordSet: ...

    def lock(self, workspace: Workspace, *, holder: Optional[str] = None): ...

    def commit(self, workspace: Workspace, state: StateRecordSet) -> StateRecordSet: ...

    def list_workspaces(self) -> List[str]: ...

    def delete_workspace(self, workspace: Workspace) -> None: ...


def _lock_conflict(workspace: Workspace, holder: Any) -> LockConflictError:
    return LockConflictError(
        message=f"workspace {workspace.name!r} já está bloqueado por outra execução",
        details={"workspace": workspace.name, "holder": holder},
        hint="Aguarde a execução em andamento terminar e tente novamente",
    )


def _next_state(workspace: Workspace, state: StateRecordSet) -> StateRecordSet:
    committed = state.copy()
    committed.workspace = workspace.name
    committed.serial = state.serial + 1
    if not committed.lineage:
        committed.lineage = uuid.uuid4().hex
    return committed


class LocalStateStore:
    """State em disco, um diretório por workspace."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _dir(self, workspace: Workspace) -> Path:
        return self.root / workspace.name

    def state_path(self, workspace: Workspace) -> Path:
        return self._dir(workspace) / STATE_FILE

    def lock_path(self, workspace: Workspace) -> Path:
        return self._dir(workspace) / LOCK_FILE

    def load(self, workspace: Workspace) -> StateRecordSet:
        path = self.state_path(workspace)
        if not path.exists():
            return StateRecordSet(workspace=workspace.name)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StateVersionError(
                message=f"state de {workspace.name!r} ilegível: {path}",
                details={"workspace": workspace.name, "path": str(path), "reason": str(e)},
                hint="Restaure o state a partir de um backup",
            ) from e
        if not isinstance(data, dict):
            raise StateVersionError(
                message=f"state de {workspace.name!r} não é um documento JSON válido",
                details={"workspace": workspace.name, "path": str(path)},
            )
        return StateRecordSet.from_dict(data)

    @contextmanager
    def lock(self, workspace: Workspace, *, holder: Optional[str] = None) -> Iterator[None]:
        path = self.lock_path(workspace)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            try:
                info: Any = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                info = None
            raise _lock_conflict(workspace, info) from None
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "holder": holder,
                    "pid": os.getpid(),
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
                f,
            )
        try:
            yield
        finally:
            try:
                path.unlink()
            except FileNotFoundError:
                pass

    def commit(self, workspace: Workspace, state: StateRecordSet) -> StateRecordSet:
        committed = _next_state(workspace, state)
        target = self.state_path(workspace)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.parent / f".{STATE_FILE}.{uuid.uuid4().hex}.tmp"
        payload = json.dumps(committed.to_dict(), ensure_ascii=False, indent=2, sort_keys=True)
        try:
            with tmp.open("w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
        except BaseException:
            if tmp.exists():
                tmp.unlink()
            raise
        return committed

    def list_workspaces(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_dir() and ((p / STATE_FILE).exists() or (p / LOCK_FILE).exists())
        )

    def delete_workspace(self, workspace: Workspace) -> None:
        with self.lock(workspace, holder="delete_workspace"):
            state = self.load(workspace)
            if state.records:
                raise WorkspaceNotEmptyError(
                    message=f"workspace {workspace.name!r} ainda possui {len(state.records)} record(s)",
                    details={"workspace": workspace.name, "records": state.addresses()},
                    hint="Destrua os recursos do workspace antes de removê-lo",
                )
            state_path = self.state_path(workspace)
            if state_path.exists():
                state_path.unlink()
        shutil.rmtree(self._dir(workspace), ignore_errors=True)


class InMemoryStateStore:
    """State em memória; documentos são guardados serializados (mesmo round-trip do disco)."""

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._held: Dict[str, Optional[str]] = {}
        self._mutex = threading.Lock()

    def load(self, workspace: Workspace) -> StateRecordSet:
        with self._mutex:
            data = self._documents.get(workspace.name)
        if data is None:
            return StateRecordSet(workspace=workspace.name)
        return StateRecordSet.from_dict(json.loads(json.dumps(data)))

    @contextmanager
    def lock(self, workspace: Workspace, *, holder: Optional[str] = None) -> Iterator[None]:
        with self._mutex:
            if workspace.name in self._held:
                raise _lock_conflict(workspace, {"holder": self._held[workspace.name]})
            self._held[workspace.name] = holder
        try:
            yield
        finally:
            with self._mutex:
                self._held.pop(workspace.name, None)

    def commit(self, workspace: Workspace, state: StateRecordSet) -> StateRecordSet:
        committed = _next_state(workspace, state)
        data = committed.to_dict()
        with self._mutex:
            self._documents[workspace.name] = data
        return committed

    def list_workspaces(self) -> List[str]:
        with self._mutex:
            return sorted(set(self._documents) | set(self._held))

    def delete_workspace(self, workspace: Workspace) -> None:
        with self.lock(workspace, holder="delete_workspace"):
            state = self.load(workspace)
            if state.records:
                raise WorkspaceNotEmptyError(
                    message=f"workspace {workspace.name!r} ainda possui {len(state.records)} record(s)",
                    details={"workspace": workspace.name, "records": state.addresses()},
                    hint="Destrua os recursos do workspace antes de removê-lo",
                )
            with self._mutex:
                self._documents.pop(workspace.name, None)


def open_store(config: Dict[str, Any]) -> StateBackend:
    """Instancia o backend indicado por `state.backend` na configuração."""
    state_cfg = (config or {}).get("state") or {}
    backend = state_cfg.get("backend", "local")
    if backend == "memory":
        return InMemoryStateStore()
    return LocalStateStore(state_cfg.get("path", ".atlas/state"))
