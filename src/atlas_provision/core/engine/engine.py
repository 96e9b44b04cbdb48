# src/atlas_provision/core/engine/engine.py
"""
Engine do Atlas Provision (plan + apply).

Fluxo:
    plan(workspace)
        grafo → state do workspace → estado desejado → diff → Plan
    apply(plan, provider)
        lock do workspace → state atual → verificação de plano desatualizado
        → Applier concorrente → commit atômico dos resultados concluídos
        → outputs → Manifest

Decisões arquiteturais:
    - O workspace é sempre um argumento explícito (nunca estado global)
    - A configuração efetiva é `DEFAULT_CONFIG` + overrides, validada
    - O engine não imprime: eventos vão para o RunContext e para o Manifest
    - Erros de load/grafo/expansão/avaliação no plan são fatais (sem plano parcial)
    - Falhas de provider no apply não abortam ramos independentes

Limites explícitos:
    - Não carrega documentos nem resolve variáveis (recebe ModuleTree e bindings)
    - Não implementa providers
"""

from __future__ import annotations

import threading
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from atlas_provision import __version__

from ..config.hashing import compute_config_hash
from ..config.loader import DEFAULT_CONFIG, validate_config
from ..config.merge import deep_merge
from ..declarations.model import ModuleTree
from ..exceptions import UnknownReferenceError
from ..graph.builder import DependencyGraph, build_graph
from ..run_context import RunContext
from ..state.model import StateRecordSet, Workspace
from ..state.store import StateBackend
from ..traceability.manifest import create_manifest, run_finished
from ..values import is_known
from .applier import Applier, Provider, apply_outcomes
from .evaluate import DesiredState, evaluate_desired_state
from .planner import diff, ensure_plan_current
from .types import ApplyResult, Plan


def _as_workspace(workspace: Union[str, Workspace]) -> Workspace:
    return workspace if isinstance(workspace, Workspace) else Workspace(workspace)


class Engine:
    """Engine canônico do Atlas Provision."""

    def __init__(
        self,
        *,
        tree: ModuleTree,
        store: StateBackend,
        variables: Optional[Dict[str, Any]] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.tree = tree
        self.store = store
        self.variables: Dict[str, Any] = dict(variables or {})
        self.config: Dict[str, Any] = validate_config(deep_merge(deepcopy(DEFAULT_CONFIG), config or {}))
        self._graph: Optional[DependencyGraph] = None

    @property
    def graph(self) -> DependencyGraph:
        if self._graph is None:
            self._graph = build_graph(self.tree)
        return self._graph

    def new_context(self, workspace: Union[str, Workspace], **meta: Any) -> RunContext:
        return RunContext.new(workspace=_as_workspace(workspace).name, config=self.config, meta=meta)

    # ------------------------------------------------------------------
    def _evaluate(self, workspace: Workspace, computed) -> DesiredState:
        return evaluate_desired_state(
            tree=self.tree,
            graph=self.graph,
            variables=self.variables,
            workspace=workspace.name,
            max_expansion=self.config["engine"]["max_expansion"],
            computed=computed,
        )

    def plan(self, workspace: Union[str, Workspace], *, ctx: Optional[RunContext] = None) -> Plan:
        """
        Calcula o changeset do workspace.

        Raises:
            AtlasException: Qualquer erro de grafo, expansão ou avaliação
                (nenhum plano parcial é produzido).
        """
        ws = _as_workspace(workspace)
        ctx = ctx or self.new_context(ws, operation="plan")
        state = self.store.load(ws)
        desired = self._evaluate(ws, _state_lookup(state))
        plan = diff(desired, state, workspace=ws.name)
        ctx.log(address="<plan>", level="info", message="plan calculado", summary=plan.summary(), fingerprint=plan.fingerprint)
        return plan

    def plan_destroy(self, workspace: Union[str, Workspace], *, ctx: Optional[RunContext] = None) -> Plan:
        """Plano que destrói todos os records do workspace."""
        ws = _as_workspace(workspace)
        ctx = ctx or self.new_context(ws, operation="plan_destroy")
        state = self.store.load(ws)
        plan = diff(DesiredState(instances={}, outputs={}), state, workspace=ws.name)
        plan = Plan(
            workspace=plan.workspace,
            changes=plan.changes,
            outputs={},
            state_serial=plan.state_serial,
            state_lineage=plan.state_lineage,
            mode="destroy",
        )
        ctx.log(address="<plan>", level="info", message="plan de destroy calculado", summary=plan.summary())
        return plan

    def outputs(self, workspace: Union[str, Workspace]) -> Dict[str, Any]:
        """Outputs raiz registrados no último apply do workspace."""
        return dict(self.store.load(_as_workspace(workspace)).outputs)

    # ------------------------------------------------------------------
    def apply(
        self,
        plan: Plan,
        provider: Provider,
        *,
        ctx: Optional[RunContext] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ApplyResult:
        """
        Executa o plano e comita os resultados concluídos.

        Raises:
            LockConflictError: Outro apply detém o lock do workspace.
            StalePlanError: O state mudou desde o plan.
        """
        ws = _as_workspace(plan.workspace)
        ctx = ctx or self.new_context(ws, operation="apply")
        manifest = create_manifest(
            run_id=ctx.run_id,
            started_at=ctx.created_at,
            atlas_version=__version__,
            workspace=ws.name,
            config_hash=compute_config_hash(self.config),
            plan_fingerprint=plan.fingerprint,
        )

        with self.store.lock(ws, holder=ctx.run_id):
            state = self.store.load(ws)
            ensure_plan_current(plan, state)

            applier: Optional[Applier] = None

            def lookup(address: str) -> Optional[Dict[str, Any]]:
                fresh = applier.computed_for(address) if applier is not None else None
                if fresh is not None:
                    return fresh
                record = state.get(address)
                return record.computed if record is not None else None

            def resolve(address: str) -> Dict[str, Any]:
                desired = self._evaluate(ws, lookup)
                instance = desired.instances.get(address)
                if instance is None:
                    raise UnknownReferenceError(
                        message=f"{address} não existe mais no estado desejado",
                        details={"address": address},
                        hint="Execute um novo plan",
                    )
                return instance.attributes

            applier = Applier(
                plan=plan,
                provider=provider,
                ctx=ctx,
                manifest=manifest,
                max_workers=self.config["apply"]["max_workers"],
                fail_fast=self.config["apply"]["fail_fast"],
                resolve=resolve,
                cancel_event=cancel_event,
            )
            outcomes = applier.run()

            new_state = apply_outcomes(state, plan, outcomes)
            new_state.outputs = self._final_outputs(ws, plan, new_state)
            committed = self.store.commit(ws, new_state)

        result = ApplyResult(outcomes=outcomes, state=committed, canceled=applier.canceled, manifest=manifest)
        run_finished(manifest, ts=datetime.now(timezone.utc), summary=result.summary())
        ctx.log(address="<apply>", level="info", message="apply concluído", summary=result.summary())
        return result

    def _final_outputs(self, ws: Workspace, plan: Plan, state: StateRecordSet) -> Dict[str, Any]:
        if plan.mode == "destroy":
            return {}
        desired = self._evaluate(ws, _state_lookup(state))
        return {name: value for name, value in desired.outputs.items() if is_known(value)}


def _state_lookup(state: StateRecordSet):
    def lookup(address: str) -> Optional[Dict[str, Any]]:
        record = state.get(address)
        return record.computed if record is not None else None

    return lookup


__all__ = ["Engine"]
