"""
E2E — Workspaces, lock, state local e módulos

Valida o engine de ponta a ponta nos cenários de isolamento e concorrência:
- workspaces distintos possuem states independentes
- apply concorrente no mesmo workspace é rejeitado (lock)
- plano calculado contra state antigo é rejeitado no apply
- state local em disco sobrevive entre instâncias do engine
- módulos com `count` produzem endereços prefixados
- o Manifest do apply pode ser salvo e recarregado
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from atlas_provision.core.declarations import load_declarations
from atlas_provision.core.engine import Action, Engine
from atlas_provision.core.exceptions import LockConflictError, StalePlanError
from atlas_provision.core.state import InMemoryStateStore, LocalStateStore, Workspace
from atlas_provision.core.traceability import load_manifest, save_manifest
from atlas_provision.core.variables import cli_layer, resolve_variables


SIMPLE = """\
resource:
  null_resource:
    app:
      env: "${workspace.name}"
"""


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_workspaces_are_isolated(make_engine, provider_factory) -> None:
    store = InMemoryStateStore()
    provider = provider_factory()
    engine = make_engine({"main.yaml": SIMPLE}, store=store)

    engine.apply(engine.plan("dev"), provider)

    prod_plan = engine.plan("prod")
    assert prod_plan.summary()["create"] == 1
    assert prod_plan.changes[0].after == {"env": "prod"}
    assert engine.plan("dev").has_changes() is False

    engine.apply(prod_plan, provider)
    assert store.list_workspaces() == ["dev", "prod"]
    assert store.load(Workspace("dev")).get("null_resource.app").attributes == {"env": "dev"}
    assert store.load(Workspace("prod")).get("null_resource.app").attributes == {"env": "prod"}


def test_concurrent_apply_is_rejected(make_engine, provider_factory) -> None:
    store = InMemoryStateStore()
    provider = provider_factory()
    engine = make_engine({"main.yaml": SIMPLE}, store=store)
    plan = engine.plan("default")

    with store.lock(Workspace("default"), holder="other-run"):
        with pytest.raises(LockConflictError) as exc:
            engine.apply(plan, provider)

    assert exc.value.retryable is True
    assert exc.value.details["holder"] == {"holder": "other-run"}
    assert provider.calls == []
    assert engine.apply(plan, provider).ok


def test_stale_plan_is_rejected(make_engine, provider_factory) -> None:
    store = InMemoryStateStore()
    provider = provider_factory()
    engine = make_engine({"main.yaml": SIMPLE}, store=store)

    stale = engine.plan("default")
    engine.apply(engine.plan("default"), provider)

    with pytest.raises(StalePlanError):
        engine.apply(stale, provider)
    assert len(provider.calls) == 1


def test_local_state_survives_engine_instances(tmp_path: Path, make_engine, provider_factory) -> None:
    store = LocalStateStore(tmp_path / ".atlas" / "state")
    provider = provider_factory()

    first = make_engine({"main.yaml": SIMPLE}, store=store)
    result = first.apply(first.plan("default"), provider)
    assert result.state.serial == 1

    path = store.state_path(Workspace("default"))
    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["serial"] == 1
    assert [r["address"] for r in document["resources"]] == ["null_resource.app"]

    second = make_engine({"main.yaml": SIMPLE}, store=LocalStateStore(tmp_path / ".atlas" / "state"))
    assert second.plan("default").has_changes() is False


def test_reserved_looking_map_is_stable_across_local_state(tmp_path: Path, make_engine, provider_factory) -> None:
    doc = "resource:\n  null_resource:\n    app:\n      meta:\n        __set__: [a, b]\n"
    store = LocalStateStore(tmp_path / ".atlas" / "state")

    first = make_engine({"main.yaml": doc}, store=store)
    first.apply(first.plan("default"), provider_factory())

    record = store.load(Workspace("default")).get("null_resource.app")
    assert record.attributes == {"meta": {"__set__": ["a", "b"]}}

    second = make_engine({"main.yaml": doc}, store=LocalStateStore(tmp_path / ".atlas" / "state"))
    assert second.plan("default").has_changes() is False


def test_modules_with_count_from_files(tmp_path: Path, dummy_config, provider_factory) -> None:
    _write(
        tmp_path / "modules" / "svc" / "main.yaml",
        """\
variable:
  name:
    type: string
resource:
  null_resource:
    bucket:
      name: "${var.name}"
    policy:
      bucket_id: "${null_resource.bucket.id}"
output:
  bucket_id:
    value: "${null_resource.bucket.id}"
""",
    )
    _write(
        tmp_path / "root" / "main.yaml",
        """\
variable:
  services:
    type: number
    default: 2
module:
  svc:
    source: ../modules/svc
    count: "${var.services}"
    name: "svc-${count.index}"
output:
  ids:
    value: "${module.svc[*].bucket_id}"
""",
    )

    tree = load_declarations([tmp_path / "root" / "main.yaml"])
    variables = resolve_variables(tree.variables, [cli_layer(["services=2"])])
    store = InMemoryStateStore()
    engine = Engine(tree=tree, store=store, variables=variables, config=dummy_config)
    provider = provider_factory()

    plan = engine.plan("default")
    assert [c.address for c in plan.changes] == [
        "module.svc[0].null_resource.bucket",
        "module.svc[1].null_resource.bucket",
        "module.svc[0].null_resource.policy",
        "module.svc[1].null_resource.policy",
    ]
    assert all(c.action is Action.CREATE for c in plan.changes)

    result = engine.apply(plan, provider)
    assert result.ok
    assert provider.received["module.svc[1].null_resource.policy"] == {
        "bucket_id": "id-module.svc[1].null_resource.bucket"
    }
    assert engine.outputs("default") == {
        "ids": ["id-module.svc[0].null_resource.bucket", "id-module.svc[1].null_resource.bucket"]
    }
    assert engine.plan("default").has_changes() is False


def test_apply_manifest_round_trip(tmp_path: Path, make_engine, provider_factory) -> None:
    engine = make_engine({"main.yaml": SIMPLE})
    plan = engine.plan("default")
    result = engine.apply(plan, provider_factory())

    out = tmp_path / "manifest.json"
    save_manifest(result.manifest, out)
    loaded = load_manifest(out)

    assert loaded.inputs["plan_fingerprint"] == plan.fingerprint
    assert loaded.run["workspace"] == "default"
    assert loaded.instances["null_resource.app"]["status"] == "success"
    assert loaded.summary == {"succeeded": 1, "failed": 0, "skipped": 0, "canceled": False}
