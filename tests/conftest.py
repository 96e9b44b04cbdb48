# tests/conftest.py
"""
Fixtures compartilhados para testes do Atlas Provision.

Este módulo define fixtures reutilizáveis que fornecem:
- configurações mínimas e determinísticas do engine
- contexto de execução controlado (RunContext)
- um Provider em memória que registra chamadas e simula falhas
- fábricas de Engine a partir de documentos em memória

Decisões arquiteturais:
    - Fixtures são mantidas simples e explícitas
    - O state padrão dos testes é em memória (sem filesystem)
    - O Provider de teste usa duck typing em vez de herança
    - Imports do core são realizados de forma lazy para
      melhorar a clareza de erros durante falhas

Invariantes:
    - Nenhuma fixture fala com serviços externos
    - Dados retornados são determinísticos e isolados por teste

Limites explícitos:
    - Não substituir testes de integração com providers reais
    - Não conter lógica condicional complexa

Este módulo existe como infraestrutura de teste e não
como validação funcional do engine.
"""

import threading
from datetime import datetime, timezone

import pytest


# =====================================================
# Config fixtures
# =====================================================

@pytest.fixture
def project_like_config_defaults_yaml() -> str:
    """
    YAML de defaults do projeto, semelhante a um `atlas.defaults.yaml` real.

    Serve como base sobre a qual overrides locais são aplicados via deep-merge.

    Returns:
        str: Conteúdo YAML com a configuração base do engine.
    """
    return """\
engine:
  max_expansion: 500
apply:
  max_workers: 8
  fail_fast: false
state:
  backend: local
  path: .atlas/state
"""


@pytest.fixture
def project_like_config_local_yaml() -> str:
    """
    YAML de override local, semelhante a um `atlas.local.yaml` de desenvolvedor.

    Representa apenas overrides; não contém a configuração completa.

    Returns:
        str: Conteúdo YAML de override local.
    """
    return """\
apply:
  max_workers: 2
state:
  backend: memory
"""


@pytest.fixture
def dummy_config() -> dict:
    """
    Configuração mínima e já resolvida para testes do engine.

    Decisões arquiteturais:
        - Backend em memória (nenhum I/O)
        - Paralelismo pequeno e explícito

    Returns:
        dict: Configuração válida para `Engine(config=...)`.
    """
    return {
        "engine": {"max_expansion": 100},
        "apply": {"max_workers": 2, "fail_fast": False},
        "state": {"backend": "memory", "path": ".atlas/state"},
    }


@pytest.fixture
def dummy_ctx(dummy_config):
    """
    RunContext determinístico para testes.

    `run_id` e `created_at` são fixos; o workspace é `default`.

    Returns:
        RunContext: Contexto de execução isolado e previsível.
    """
    from atlas_provision.core.run_context import RunContext

    return RunContext(
        run_id="run-test-001",
        created_at=datetime(2026, 1, 16, 0, 0, 0, tzinfo=timezone.utc),
        workspace="default",
        config=dummy_config,
        meta={"source": "pytest"},
    )


# =====================================================
# Provider fixtures
# =====================================================

class RecordingProvider:
    """
    Provider em memória para testes.

    Comportamento:
        - create/update devolvem atributos calculados `{"id": "id-<address>"}`
          (mais `arn` quando `with_arn=True`)
        - endereços em `fail_on` levantam RuntimeError na operação indicada
        - toda chamada é registrada em `calls` na ordem em que terminou
    """

    def __init__(self, *, fail_on=None, with_arn=False, on_call=None):
        self.fail_on = dict(fail_on or {})
        self.with_arn = with_arn
        self.on_call = on_call
        self.calls = []
        self.received = {}
        self._lock = threading.Lock()

    def _maybe_fail(self, op, address):
        if self.on_call is not None:
            self.on_call(op, address)
        if self.fail_on.get(address) == op:
            raise RuntimeError(f"falha simulada em {op} de {address}")

    def _computed(self, address):
        out = {"id": f"id-{address}"}
        if self.with_arn:
            out["arn"] = f"arn:test:{address}"
        return out

    def _record(self, op, address, attributes):
        with self._lock:
            self.calls.append((op, address))
            self.received[address] = attributes

    def create(self, address, resource_type, attributes):
        self._maybe_fail("create", address)
        self._record("create", address, attributes)
        return self._computed(address)

    def update(self, address, resource_type, before, after):
        self._maybe_fail("update", address)
        self._record("update", address, after)
        return self._computed(address)

    def delete(self, address, resource_type, attributes):
        self._maybe_fail("delete", address)
        self._record("delete", address, attributes)
        return None

    def addresses(self, op):
        return [a for o, a in self.calls if o == op]


@pytest.fixture
def provider_factory():
    """
    Fábrica de `RecordingProvider`.

    Returns:
        type: Classe instanciável pelos testes com `fail_on`, `with_arn`, `on_call`.
    """
    return RecordingProvider


# =====================================================
# Engine fixtures
# =====================================================

@pytest.fixture
def make_engine(dummy_config):
    """
    Fábrica de Engine a partir de documentos YAML em memória.

    Uso:
        engine = make_engine({"main.yaml": "..."}, store=store, overrides={"n": 3})

    Variáveis são resolvidas pelo resolver real (defaults + camada CLI
    construída a partir de `overrides`).

    Returns:
        Callable: fábrica `(documents, store=None, overrides=None, config=None) -> Engine`.
    """
    from atlas_provision.core.declarations import parse_declarations
    from atlas_provision.core.engine import Engine
    from atlas_provision.core.state import InMemoryStateStore
    from atlas_provision.core.variables import VariableLayer, resolve_variables

    def _make(documents, *, store=None, overrides=None, config=None, base_dir=None):
        tree = parse_declarations(documents, base_dir=base_dir)
        layers = []
        if overrides:
            layers.append(VariableLayer(source="test", values=dict(overrides), textual=False))
        variables = resolve_variables(tree.variables, layers)
        return Engine(
            tree=tree,
            store=store if store is not None else InMemoryStateStore(),
            variables=variables,
            config=config if config is not None else dummy_config,
        )

    return _make
