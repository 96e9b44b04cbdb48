# tests/core/variables/test_resolver.py
"""
Testes do Variable Resolver.

Os testes asseguram que:
- a precedência é default < ambiente < arquivos < CLI
- camadas textuais são interpretadas conforme o tipo declarado
- overrides para variáveis não declaradas são erro
- variável obrigatória sem valor é erro
- valores incompatíveis com o tipo são erro

Limites explícitos:
    - Não valida o carregamento de declarações
"""
from pathlib import Path

import pytest

try:
    from atlas_provision.core.config.errors import OverrideFileNotFoundError
    from atlas_provision.core.declarations import parse_declarations
    from atlas_provision.core.exceptions import (
        MissingVariableError,
        TypeMismatchError,
        UndeclaredVariableError,
    )
    from atlas_provision.core.values import make_set
    from atlas_provision.core.variables import (
        VariableLayer,
        cli_layer,
        env_layer,
        file_layer,
        resolve_variables,
    )
except Exception as e:  # noqa: BLE001
    resolve_variables = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing src/atlas_provision/core/variables. Import error: {_IMPORT_ERR}")


DOC = """\
variable:
  region:
    type: string
    default: us-east-1
  replicas:
    type: number
    default: 1
  zones:
    type: list(string)
    default: [a]
  names:
    type: set(string)
    default: []
  tags:
    type: map(string)
    default: {}
"""


def _declared(doc=DOC):
    return parse_declarations({"vars.yaml": doc}).variables


def test_defaults_only():
    _require_imports()
    out = resolve_variables(_declared())
    assert out == {
        "region": "us-east-1",
        "replicas": 1,
        "zones": ["a"],
        "names": make_set([]),
        "tags": {},
    }


def test_precedence_env_file_cli(tmp_path: Path):
    """
    Verifica a ordem de precedência entre as camadas de override.

    Invariantes:
        - A camada mais específica vence
        - Camadas que não citam a variável não alteram o valor
    """
    _require_imports()
    declared = _declared()
    override = tmp_path / "prod.yaml"
    override.write_text("region: eu-west-1\nreplicas: 3\n", encoding="utf-8")

    layers = [
        env_layer(declared, environ={"ATLAS_VAR_region": "sa-east-1", "ATLAS_VAR_zones": "[x, y]"}),
        file_layer(override),
        cli_layer(["replicas=5"]),
    ]
    out = resolve_variables(declared, layers)

    assert out["region"] == "eu-west-1"
    assert out["replicas"] == 5
    assert out["zones"] == ["x", "y"]


def test_env_layer_ignores_undeclared_names():
    _require_imports()
    declared = _declared()
    layer = env_layer(declared, environ={"ATLAS_VAR_other": "1", "PATH": "/bin", "ATLAS_VAR_region": "x"})
    assert dict(layer.values) == {"region": "x"}
    assert layer.textual is True


def test_textual_values_are_parsed_by_type():
    _require_imports()
    out = resolve_variables(
        _declared(),
        [cli_layer(["region=123", "replicas=2", "names=[b, a]", "tags={env: prod}"])],
    )
    assert out["region"] == "123"
    assert out["replicas"] == 2
    assert out["names"] == make_set(["a", "b"])
    assert out["tags"] == {"env": "prod"}


def test_cli_layer_rejects_malformed_assignment():
    _require_imports()
    with pytest.raises(ValueError):
        cli_layer(["no-equals-sign"])
    with pytest.raises(ValueError):
        cli_layer(["=value"])


def test_undeclared_override_is_error():
    _require_imports()
    with pytest.raises(UndeclaredVariableError) as exc:
        resolve_variables(_declared(), [VariableLayer(source="cli", values={"nope": 1})])
    assert exc.value.details["source"] == "cli"


def test_missing_required_variable():
    _require_imports()
    declared = _declared("variable:\n  token:\n    type: string\n")
    with pytest.raises(MissingVariableError) as exc:
        resolve_variables(declared)
    assert exc.value.details["variable"] == "token"


def test_type_mismatch_from_override():
    _require_imports()
    with pytest.raises(TypeMismatchError) as exc:
        resolve_variables(_declared(), [cli_layer(["replicas=many"])])
    assert exc.value.details["source"] == "cli"


def test_set_rejects_duplicates():
    _require_imports()
    with pytest.raises(TypeMismatchError):
        resolve_variables(_declared(), [VariableLayer(source="test", values={"names": ["a", "a"]})])


def test_list_variable_rejects_map():
    _require_imports()
    with pytest.raises(TypeMismatchError):
        resolve_variables(_declared(), [VariableLayer(source="test", values={"zones": {"a": "b"}})])


def test_missing_override_file(tmp_path: Path):
    _require_imports()
    with pytest.raises(OverrideFileNotFoundError):
        file_layer(tmp_path / "missing.yaml")
