# tests/core/engine/test_applier.py
"""
Testes do Applier concorrente.

Os testes asseguram que:
- uma instância só é aplicada depois das suas dependências
- destroys respeitam a ordem reversa (dependentes primeiro)
- falhas marcam dependentes como `skipped`, sem abortar ramos independentes
- `fail_fast` e `cancel_event` interrompem o agendamento
- no-op não chama o provider e conta como sucesso
- atributos desconhecidos são reavaliados antes do create/update
- `apply_outcomes` incorpora ao state apenas resultados bem-sucedidos

Decisões arquiteturais:
    - O provider de teste (`RecordingProvider`) registra chamadas na ordem
      em que terminaram
    - Cenários que dependem de ordem usam `max_workers=1` ou dependências
      explícitas para serem determinísticos

Limites explícitos:
    - Não valida lock nem commit de state (ver tests/e2e)
"""
import threading
import time

import pytest

try:
    from atlas_provision.core.engine import Action, Applier, InstanceStatus, apply_outcomes, diff
    from atlas_provision.core.engine.evaluate import DesiredInstance, DesiredState
    from atlas_provision.core.errors import (
        APPLY_CANCELED,
        PROVIDER_OPERATION_ERROR,
        SKIPPED_DUE_TO_DEPENDENCY_FAILURE,
        UNKNOWN_VALUE,
    )
    from atlas_provision.core.expansion import NO_KEY
    from atlas_provision.core.state.model import StateRecord, StateRecordSet
    from atlas_provision.core.traceability.manifest import create_manifest
    from atlas_provision.core.values import UNKNOWN
except Exception as e:  # noqa: BLE001
    Applier = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing src/atlas_provision/core/engine/applier.py. Import error: {_IMPORT_ERR}")


def _instance(address, attributes, *, position, dependencies=()):
    return DesiredInstance(
        address=address,
        node_id=address,
        resource_type="null_resource",
        module_instance=(),
        key=NO_KEY,
        attributes=dict(attributes),
        dependencies=list(dependencies),
        sort_key=(position, (), NO_KEY.sort_key()),
    )


def _plan(*instances, records=()):
    desired = DesiredState(instances={i.address: i for i in instances}, outputs={})
    state = StateRecordSet(workspace="default", records={r.address: r for r in records})
    return diff(desired, state, workspace="default"), state


def _record(address, attributes=None, *, dependencies=()):
    return StateRecord(
        address=address,
        resource_type="null_resource",
        attributes=dict(attributes or {}),
        computed={"id": f"id-{address}"},
        dependencies=list(dependencies),
    )


def _chain():
    return _plan(
        _instance("null_resource.a", {"v": 1}, position=0),
        _instance("null_resource.b", {"v": 2}, position=1, dependencies=["null_resource.a"]),
        _instance("null_resource.c", {"v": 3}, position=2, dependencies=["null_resource.b"]),
        _instance("null_resource.solo", {"v": 4}, position=3),
    )


def test_dependencies_are_applied_first(dummy_ctx, provider_factory):
    """
    Verifica que create de uma instância só ocorre após o create das dependências.
    """
    _require_imports()
    plan, _ = _chain()
    provider = provider_factory()

    outcomes = Applier(plan=plan, provider=provider, ctx=dummy_ctx, max_workers=4).run()

    created = provider.addresses("create")
    assert created.index("null_resource.a") < created.index("null_resource.b") < created.index("null_resource.c")
    assert set(created) == {"null_resource.a", "null_resource.b", "null_resource.c", "null_resource.solo"}
    assert all(o.status is InstanceStatus.SUCCESS for o in outcomes.values())
    assert outcomes["null_resource.b"].computed == {"id": "id-null_resource.b"}
    assert outcomes["null_resource.b"].attributes == {"v": 2}


def test_failure_skips_dependents_but_not_independent_branches(dummy_ctx, provider_factory):
    _require_imports()
    plan, _ = _chain()
    provider = provider_factory(fail_on={"null_resource.a": "create"})

    outcomes = Applier(plan=plan, provider=provider, ctx=dummy_ctx, max_workers=2).run()

    assert outcomes["null_resource.a"].status is InstanceStatus.FAILED
    assert outcomes["null_resource.a"].error.type == PROVIDER_OPERATION_ERROR
    assert outcomes["null_resource.a"].error.details["exception_class"] == "RuntimeError"
    for address in ("null_resource.b", "null_resource.c"):
        assert outcomes[address].status is InstanceStatus.SKIPPED
        assert outcomes[address].error.type == SKIPPED_DUE_TO_DEPENDENCY_FAILURE
    assert outcomes["null_resource.solo"].status is InstanceStatus.SUCCESS
    assert provider.addresses("create") == ["null_resource.solo"]
    assert "null_resource.c" in dummy_ctx.warnings


def test_fail_fast_cancels_pending_instances(dummy_ctx, provider_factory):
    _require_imports()
    plan, _ = _plan(
        _instance("null_resource.a", {}, position=0),
        _instance("null_resource.b", {}, position=1),
        _instance("null_resource.c", {}, position=2),
    )
    provider = provider_factory(fail_on={"null_resource.a": "create"})

    outcomes = Applier(plan=plan, provider=provider, ctx=dummy_ctx, max_workers=1, fail_fast=True).run()

    assert outcomes["null_resource.a"].status is InstanceStatus.FAILED
    for address in ("null_resource.b", "null_resource.c"):
        assert outcomes[address].status is InstanceStatus.SKIPPED
        assert outcomes[address].error.type == APPLY_CANCELED
        assert outcomes[address].error.details["reason"] == "fail_fast"
    assert provider.calls == []


def test_cancel_event_lets_in_flight_finish(dummy_ctx, provider_factory):
    """
    Verifica que o cancelamento não interrompe a operação em andamento,
    mas impede que as restantes iniciem.
    """
    _require_imports()
    plan, _ = _plan(
        _instance("null_resource.a", {}, position=0),
        _instance("null_resource.b", {}, position=1),
    )
    cancel = threading.Event()
    provider = provider_factory(on_call=lambda op, address: cancel.set())
    manifest = create_manifest(
        run_id="run-test-001",
        started_at=dummy_ctx.created_at,
        atlas_version="0.0.0",
        workspace="default",
        config_hash="c" * 64,
        plan_fingerprint=plan.fingerprint,
    )

    applier = Applier(plan=plan, provider=provider, ctx=dummy_ctx, manifest=manifest, max_workers=1, cancel_event=cancel)
    outcomes = applier.run()

    assert applier.canceled is True
    assert outcomes["null_resource.a"].status is InstanceStatus.SUCCESS
    assert outcomes["null_resource.b"].status is InstanceStatus.SKIPPED
    assert outcomes["null_resource.b"].error.type == APPLY_CANCELED
    assert provider.addresses("create") == ["null_resource.a"]
    assert "apply_canceled" in [e["event_type"] for e in manifest.events]
    assert manifest.instances["null_resource.b"]["status"] == "skipped"


def test_noop_does_not_call_provider(dummy_ctx, provider_factory):
    _require_imports()
    plan, _ = _plan(
        _instance("null_resource.a", {"v": 1}, position=0),
        records=[_record("null_resource.a", {"v": 1})],
    )
    provider = provider_factory()

    outcomes = Applier(plan=plan, provider=provider, ctx=dummy_ctx).run()

    assert plan.changes[0].action is Action.NOOP
    assert outcomes["null_resource.a"].status is InstanceStatus.SUCCESS
    assert provider.calls == []


def test_destroys_run_dependents_first(dummy_ctx, provider_factory):
    _require_imports()
    plan, _ = _plan(
        records=[
            _record("null_resource.net"),
            _record("null_resource.subnet", dependencies=["null_resource.net"]),
            _record("null_resource.vm", dependencies=["null_resource.subnet"]),
        ]
    )
    provider = provider_factory()

    Applier(plan=plan, provider=provider, ctx=dummy_ctx, max_workers=4).run()

    assert provider.addresses("delete") == ["null_resource.vm", "null_resource.subnet", "null_resource.net"]


def test_failed_destroy_keeps_dependencies(dummy_ctx, provider_factory):
    _require_imports()
    plan, _ = _plan(
        records=[
            _record("null_resource.net"),
            _record("null_resource.vm", dependencies=["null_resource.net"]),
        ]
    )
    provider = provider_factory(fail_on={"null_resource.vm": "delete"})

    outcomes = Applier(plan=plan, provider=provider, ctx=dummy_ctx).run()

    assert outcomes["null_resource.vm"].status is InstanceStatus.FAILED
    assert outcomes["null_resource.net"].status is InstanceStatus.SKIPPED
    assert provider.calls == []


def _detached_vm_plan():
    return _plan(
        _instance("null_resource.vm", {"net_id": "static"}, position=0),
        records=[
            _record("null_resource.net"),
            _record("null_resource.vm", {"net_id": "id-null_resource.net"}, dependencies=["null_resource.net"]),
        ],
    )


def test_destroy_waits_for_update_of_former_dependent(dummy_ctx, provider_factory):
    """
    Verifica que o record removido só é destruído depois que a instância
    que o referenciava em state foi atualizada para deixar de usá-lo.
    """
    _require_imports()
    plan, _ = _detached_vm_plan()
    assert plan.change_for("null_resource.vm").action is Action.UPDATE
    assert plan.change_for("null_resource.vm").prior_dependencies == ["null_resource.net"]
    provider = provider_factory(on_call=lambda op, address: time.sleep(0.2) if op == "update" else None)

    outcomes = Applier(plan=plan, provider=provider, ctx=dummy_ctx, max_workers=4).run()

    assert provider.calls == [("update", "null_resource.vm"), ("delete", "null_resource.net")]
    assert all(o.status is InstanceStatus.SUCCESS for o in outcomes.values())


def test_failed_update_keeps_former_dependency(dummy_ctx, provider_factory):
    _require_imports()
    plan, _ = _detached_vm_plan()
    provider = provider_factory(fail_on={"null_resource.vm": "update"})

    outcomes = Applier(plan=plan, provider=provider, ctx=dummy_ctx, max_workers=4).run()

    assert outcomes["null_resource.vm"].status is InstanceStatus.FAILED
    assert outcomes["null_resource.net"].status is InstanceStatus.SKIPPED
    assert outcomes["null_resource.net"].error.type == SKIPPED_DUE_TO_DEPENDENCY_FAILURE
    assert provider.calls == []


def test_unknown_attributes_are_resolved_before_apply(dummy_ctx, provider_factory):
    _require_imports()
    plan, _ = _plan(_instance("null_resource.a", {"parent": UNKNOWN}, position=0))
    provider = provider_factory()

    outcomes = Applier(
        plan=plan,
        provider=provider,
        ctx=dummy_ctx,
        resolve=lambda address: {"parent": "id-x"},
    ).run()

    assert outcomes["null_resource.a"].status is InstanceStatus.SUCCESS
    assert provider.received["null_resource.a"] == {"parent": "id-x"}


def test_unresolvable_unknown_fails_instance(dummy_ctx, provider_factory):
    _require_imports()
    plan, _ = _plan(_instance("null_resource.a", {"parent": UNKNOWN}, position=0))
    provider = provider_factory()

    outcomes = Applier(plan=plan, provider=provider, ctx=dummy_ctx).run()

    assert outcomes["null_resource.a"].status is InstanceStatus.FAILED
    assert outcomes["null_resource.a"].error.type == UNKNOWN_VALUE
    assert provider.calls == []


def test_provider_returning_non_dict_fails(dummy_ctx):
    _require_imports()

    class BadProvider:
        def create(self, address, resource_type, attributes):
            return "i-123"

        def update(self, address, resource_type, before, after):
            return None

        def delete(self, address, resource_type, attributes):
            return None

    plan, _ = _plan(_instance("null_resource.a", {}, position=0))
    outcomes = Applier(plan=plan, provider=BadProvider(), ctx=dummy_ctx).run()

    assert outcomes["null_resource.a"].status is InstanceStatus.FAILED
    assert outcomes["null_resource.a"].error.type == PROVIDER_OPERATION_ERROR


def test_apply_outcomes_only_keeps_successes(dummy_ctx, provider_factory):
    """
    Verifica que o state resultante reflete apenas instâncias concluídas com sucesso.
    """
    _require_imports()
    plan, state = _plan(
        _instance("null_resource.keep", {"v": 1}, position=0),
        _instance("null_resource.new", {"v": 2}, position=1),
        _instance("null_resource.bad", {"v": 30}, position=2),
        records=[
            _record("null_resource.keep", {"v": 1}),
            _record("null_resource.bad", {"v": 3}),
            _record("null_resource.gone"),
        ],
    )
    provider = provider_factory(fail_on={"null_resource.bad": "update"})

    outcomes = Applier(plan=plan, provider=provider, ctx=dummy_ctx).run()
    updated = apply_outcomes(state, plan, outcomes)

    assert updated.addresses() == ["null_resource.bad", "null_resource.keep", "null_resource.new"]
    assert updated.get("null_resource.new").attributes == {"v": 2}
    assert updated.get("null_resource.new").computed == {"id": "id-null_resource.new"}
    assert updated.get("null_resource.bad").attributes == {"v": 3}
    assert state.get("null_resource.gone") is not None
