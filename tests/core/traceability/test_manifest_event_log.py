# tests/core/traceability/test_manifest_event_log.py
"""
Testes do Event Log do Manifest.

Os testes garantem que:
- eventos são adicionados somente por chamadas explícitas à API
- a ordem de inserção dos eventos é preservada
- metadados associados aos eventos (tipo, address, payload) são registrados
- a API aceita o Manifest em forma de dicionário

Decisões arquiteturais:
    - O Event Log não gera eventos implicitamente
    - Não há reordenação automática por timestamp

Limites explícitos:
    - Não valida persistência em disco do Event Log
    - Não valida integração com o applier
"""
from datetime import datetime, timezone

import pytest

try:
    from atlas_provision.core.traceability.manifest import add_event, create_manifest
except Exception as e:  # noqa: BLE001
    create_manifest = None
    add_event = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing event log APIs. Implement:\n"
            "- add_event(manifest, event_type, ts, address=None, payload=None)\n"
            f"Import error: {_IMPORT_ERR}"
        )


def _manifest():
    return create_manifest(
        run_id="run-003",
        started_at=datetime(2026, 1, 16, 12, 0, 0, tzinfo=timezone.utc),
        atlas_version="0.0.0",
        workspace="default",
        config_hash="c" * 64,
        plan_fingerprint="f" * 64,
    )


def test_event_log_appends_ordered_events():
    """
    Verifica que eventos são adicionados ao Event Log em ordem de chamada,
    mesmo quando os timestamps estão fora de ordem.
    """
    _require_imports()
    m = _manifest()
    t0 = datetime(2026, 1, 16, 12, 0, 5, tzinfo=timezone.utc)
    t1 = datetime(2026, 1, 16, 12, 0, 1, tzinfo=timezone.utc)

    add_event(m, event_type="apply_started", ts=t0, payload={"note": "begin"})
    add_event(m, event_type="instance_started", ts=t1, address="null_resource.a", payload={"action": "create"})

    data = m.to_dict()
    assert len(data["events"]) == 2
    assert data["events"][0]["event_type"] == "apply_started"
    assert "address" not in data["events"][0]
    assert data["events"][1]["event_type"] == "instance_started"
    assert data["events"][1]["address"] == "null_resource.a"
    assert data["events"][1]["payload"] == {"action": "create"}


def test_event_log_accepts_dict_manifest():
    _require_imports()
    data = _manifest().to_dict()
    add_event(data, event_type="apply_canceled", ts=datetime(2026, 1, 16, 12, 0, 1, tzinfo=timezone.utc))
    assert [e["event_type"] for e in data["events"]] == ["apply_canceled"]
