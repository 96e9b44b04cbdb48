# src/atlas_provision/core/engine/applier.py
"""
Applier do Atlas Provision.

Executa o changeset de um `Plan` contra um `Provider`, aplicando em paralelo
instâncias independentes (`apply.max_workers`).

Regras de agendamento:
    - create/update inicia só depois que todos os create/update das suas
      dependências terminaram com sucesso
    - destroy inicia só depois que todos os destroy dos seus dependentes
      (registrados em state) terminaram com sucesso
    - destroy de um record que ainda é referenciado em state por uma
      instância em update aguarda o sucesso desse update
    - no-op não chama o provider e conta como sucesso
    - falha de uma instância marca seus dependentes (transitivamente) como
      `skipped` com `SKIPPED_DUE_TO_DEPENDENCY_FAILURE`
    - atributos desconhecidos no plano são reavaliados (callback `resolve`)
      imediatamente antes do create/update
    - no máximo `max_workers` operações ficam em andamento; as demais
      aguardam e podem ser canceladas antes de iniciar

Cancelamento:
    - `cancel_event` sinalizado (ou KeyboardInterrupt) interrompe o
      agendamento; operações em andamento terminam normalmente e as
      restantes recebem `APPLY_CANCELED`
    - `fail_fast` interrompe o agendamento na primeira falha

Invariantes:
    - Toda instância do plano recebe exatamente um `InstanceOutcome`
    - Eventos de Manifest e RunContext são registrados pela thread que
      coordena o apply

Limites explícitos:
    - Não lê nem grava state (ver `apply_outcomes`)
    - Não faz retry de operações do provider
"""

from __future__ import annotations

import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from ..errors import apply_canceled, exception_to_payload, skipped_due_to_dependency
from ..exceptions import ProviderOperationError, UnknownValueError
from ..run_context import RunContext
from ..state.model import StateRecord, StateRecordSet
from ..traceability.manifest import (
    AtlasManifest,
    add_event,
    instance_failed,
    instance_finished,
    instance_skipped,
    instance_started,
)
from ..values import is_known
from .types import Action, InstanceOutcome, InstanceStatus, Plan, ResourceChange


_POLL_SECONDS = 0.05


class Provider(Protocol):
    """Colaborador externo que materializa resources."""

    def create(self, address: str, resource_type: str, attributes: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...

    def update(
        self,
        address: str,
        resource_type: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]: ...

    def delete(self, address: str, resource_type: str, attributes: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _prerequisites(plan: Plan) -> Dict[str, Set[str]]:
    """Pré-requisitos de agendamento de cada instância com ação real."""
    changes = {c.address: c for c in plan.changes if c.action is not Action.NOOP}
    prereqs: Dict[str, Set[str]] = {a: set() for a in changes}
    for address, change in changes.items():
        if change.action is Action.DESTROY:
            for dep in change.dependencies:
                other = changes.get(dep)
                if other is not None and other.action is Action.DESTROY:
                    prereqs[dep].add(address)
        else:
            for dep in change.dependencies:
                other = changes.get(dep)
                if other is not None and other.action in (Action.CREATE, Action.UPDATE):
                    prereqs[address].add(dep)
            for dep in change.prior_dependencies:
                other = changes.get(dep)
                if other is not None and other.action is Action.DESTROY:
                    prereqs[dep].add(address)
    return prereqs


def _call_provider(provider: Provider, change: ResourceChange, attributes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    try:
        if change.action is Action.CREATE:
            computed = provider.create(change.address, change.resource_type, attributes)
        elif change.action is Action.UPDATE:
            computed = provider.update(change.address, change.resource_type, change.before, attributes)
        else:
            computed = provider.delete(change.address, change.resource_type, change.before)
    except ProviderOperationError:
        raise
    except Exception as e:
        raise ProviderOperationError(
            message=f"provider falhou em {change.action.value} de {change.address}: {e}",
            details={
                "address": change.address,
                "action": change.action.value,
                "exception_class": e.__class__.__name__,
            },
            hint="Verifique o log do provider e execute novamente o apply",
        ) from e
    if computed is None:
        return {}
    if not isinstance(computed, dict):
        raise ProviderOperationError(
            message=f"provider devolveu {type(computed).__name__} para {change.address}; esperado dict",
            details={"address": change.address, "action": change.action.value},
        )
    return dict(computed)


class Applier:
    """Coordena um apply concorrente com propagação de falhas."""

    def __init__(
        self,
        *,
        plan: Plan,
        provider: Provider,
        ctx: RunContext,
        manifest: Optional[AtlasManifest] = None,
        max_workers: int = 4,
        fail_fast: bool = False,
        resolve: Optional[Callable[[str], Dict[str, Any]]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.plan = plan
        self.provider = provider
        self.ctx = ctx
        self.manifest = manifest
        self.max_workers = max_workers
        self.fail_fast = fail_fast
        self.resolve = resolve
        self.cancel_event = cancel_event or threading.Event()

        self._changes: Dict[str, ResourceChange] = {c.address: c for c in plan.changes}
        self._prereqs = _prerequisites(plan)
        self._dependents: Dict[str, Set[str]] = {a: set() for a in self._prereqs}
        for address, reqs in self._prereqs.items():
            for r in reqs:
                self._dependents[r].add(address)
        self._outcomes: Dict[str, InstanceOutcome] = {}
        self._stop_reason: Optional[str] = None

    # ------------------------------------------------------------------
    def _record(self, outcome: InstanceOutcome) -> None:
        self._outcomes[outcome.address] = outcome
        ts = _now()
        if outcome.status is InstanceStatus.SUCCESS:
            self.ctx.log(address=outcome.address, level="info", message=f"{outcome.action.value} concluído")
            if self.manifest is not None:
                instance_finished(self.manifest, address=outcome.address, ts=ts, action=outcome.action.value)
        elif outcome.status is InstanceStatus.FAILED:
            self.ctx.log(
                address=outcome.address,
                level="error",
                message=outcome.error.message,
                error=outcome.error.to_dict(),
            )
            if self.manifest is not None:
                instance_failed(self.manifest, address=outcome.address, ts=ts, error=outcome.error.to_dict())
        else:
            self.ctx.log(address=outcome.address, level="warning", message=outcome.error.message)
            self.ctx.add_warning(address=outcome.address, message=outcome.error.message)
            if self.manifest is not None:
                instance_skipped(
                    self.manifest,
                    address=outcome.address,
                    action=outcome.action.value,
                    ts=ts,
                    error=outcome.error.to_dict(),
                )

    def _skip_dependents(self, failed: str) -> None:
        stack = sorted(self._dependents.get(failed, ()))
        while stack:
            address = stack.pop(0)
            if address in self._outcomes:
                continue
            change = self._changes[address]
            self._record(
                InstanceOutcome(
                    address=address,
                    action=change.action,
                    status=InstanceStatus.SKIPPED,
                    error=skipped_due_to_dependency(address=address, failed_dependencies=[failed]),
                )
            )
            stack.extend(sorted(self._dependents.get(address, ())))

    def _fail(self, change: ResourceChange, exc: BaseException) -> None:
        self._record(
            InstanceOutcome(
                address=change.address,
                action=change.action,
                status=InstanceStatus.FAILED,
                error=exception_to_payload(exc),
            )
        )
        self._skip_dependents(change.address)
        if self.fail_fast and self._stop_reason is None:
            self._stop_reason = "fail_fast"

    def _attributes_for(self, change: ResourceChange) -> Optional[Dict[str, Any]]:
        if change.action is Action.DESTROY:
            return None
        attributes = change.after
        if is_known(attributes):
            return attributes
        if self.resolve is not None:
            attributes = self.resolve(change.address)
        if not is_known(attributes):
            raise UnknownValueError(
                message=f"atributos de {change.address} continuam desconhecidos no apply",
                details={"address": change.address},
                hint="Verifique se o provider devolveu os atributos calculados referenciados",
            )
        return attributes

    def _ready(self, in_flight: Set[str]) -> List[str]:
        return [
            c.address
            for c in self.plan.changes
            if c.address in self._prereqs
            and c.address not in self._outcomes
            and c.address not in in_flight
            and not self._prereqs[c.address]
        ]

    # ------------------------------------------------------------------
    def run(self) -> Dict[str, InstanceOutcome]:
        for change in self.plan.changes:
            if change.action is Action.NOOP:
                self._record(
                    InstanceOutcome(
                        address=change.address,
                        action=Action.NOOP,
                        status=InstanceStatus.SUCCESS,
                        attributes=change.after,
                        computed=dict(change.computed),
                    )
                )

        futures: Dict[Future, ResourceChange] = {}
        attributes_by_address: Dict[str, Optional[Dict[str, Any]]] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="atlas-apply") as pool:
            while True:
                if self._stop_reason is None and self.cancel_event.is_set():
                    self._stop_reason = "canceled"

                if self._stop_reason is None:
                    in_flight = {c.address for c in futures.values()}
                    for address in self._ready(in_flight):
                        if len(futures) >= self.max_workers or self._stop_reason is not None:
                            break
                        change = self._changes[address]
                        try:
                            attributes = self._attributes_for(change)
                        except Exception as e:
                            self._fail(change, e)
                            continue
                        attributes_by_address[address] = attributes
                        if self.manifest is not None:
                            instance_started(self.manifest, address=address, action=change.action.value, ts=_now())
                        self.ctx.log(address=address, level="info", message=f"{change.action.value} iniciado")
                        futures[pool.submit(_call_provider, self.provider, change, attributes)] = change

                if not futures:
                    break

                try:
                    done, _ = wait(list(futures), timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    self._stop_reason = "interrupted"
                    continue

                for future in sorted(done, key=lambda f: futures[f].address):
                    change = futures.pop(future)
                    try:
                        computed = future.result()
                    except Exception as e:
                        self._fail(change, e)
                        continue
                    self._record(
                        InstanceOutcome(
                            address=change.address,
                            action=change.action,
                            status=InstanceStatus.SUCCESS,
                            attributes=attributes_by_address.get(change.address),
                            computed=computed,
                        )
                    )
                    for dependent in self._dependents.get(change.address, ()):
                        self._prereqs[dependent].discard(change.address)

        if self._stop_reason is not None:
            if self.manifest is not None and self._stop_reason != "fail_fast":
                add_event(self.manifest, event_type="apply_canceled", ts=_now(), payload={"reason": self._stop_reason})
            for change in self.plan.changes:
                if change.address not in self._outcomes:
                    self._record(
                        InstanceOutcome(
                            address=change.address,
                            action=change.action,
                            status=InstanceStatus.SKIPPED,
                            error=apply_canceled(address=change.address, reason=self._stop_reason),
                        )
                    )

        return {c.address: self._outcomes[c.address] for c in self.plan.changes}

    def computed_for(self, address: str) -> Optional[Dict[str, Any]]:
        """Atributos calculados de uma instância já aplicada com sucesso neste apply."""
        outcome = self._outcomes.get(address)
        if outcome is None or outcome.status is not InstanceStatus.SUCCESS or outcome.action is Action.NOOP:
            return None
        return outcome.computed

    @property
    def canceled(self) -> bool:
        return self._stop_reason in ("canceled", "interrupted")


def apply_outcomes(state: StateRecordSet, plan: Plan, outcomes: Dict[str, InstanceOutcome]) -> StateRecordSet:
    """
    Incorpora ao state os resultados concluídos com sucesso.

    Falhas e instâncias puladas deixam o record anterior intacto.
    """
    updated = state.copy()
    for change in plan.changes:
        outcome = outcomes.get(change.address)
        if outcome is None or outcome.status is not InstanceStatus.SUCCESS:
            continue
        if change.action is Action.DESTROY:
            updated.records.pop(change.address, None)
            continue
        if change.action is Action.NOOP:
            record = updated.records.get(change.address)
            if record is not None:
                record.dependencies = list(change.dependencies)
            continue
        updated.records[change.address] = StateRecord(
            address=change.address,
            resource_type=change.resource_type,
            attributes=dict(outcome.attributes or {}),
            computed=dict(outcome.computed),
            dependencies=list(change.dependencies),
        )
    return updated
