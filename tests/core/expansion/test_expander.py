# tests/core/expansion/test_expander.py
"""
Testes do Expansion Engine.

Os testes asseguram que:
- sem diretiva há exatamente uma instância sem chave
- `count = n` produz as chaves 0..n-1
- `for_each` aceita map e set; lista é rejeitada
- chaves de set colidindo após conversão para string são erro
- valores desconhecidos na diretiva são erro
- o limite `max_expansion` é respeitado

Limites explícitos:
    - Não avalia expressões (recebe valores já avaliados)
"""
import pytest

try:
    from atlas_provision.core.exceptions import (
        DuplicateKeyError,
        ExpansionLimitError,
        TypeMismatchError,
        UnknownValueError,
    )
    from atlas_provision.core.expansion import NO_KEY, InstanceKey, expand
    from atlas_provision.core.values import UNKNOWN, make_set
except Exception as e:  # noqa: BLE001
    expand = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing src/atlas_provision/core/expansion/expander.py. Import error: {_IMPORT_ERR}")


def _keys(instances):
    return [i.key.value for i in instances]


def test_no_directive_yields_single_unkeyed_instance():
    _require_imports()
    out = expand(None, None, declaration="a_b.c", max_expansion=10)
    assert len(out) == 1
    assert out[0].key == NO_KEY
    assert str(out[0].key) == ""
    assert out[0].bindings(None) == {}


def test_count_yields_indices():
    """
    Verifica que `count = 3` gera exatamente as chaves 0, 1, 2.
    """
    _require_imports()
    out = expand("count", 3, declaration="a_b.c", max_expansion=10)
    assert _keys(out) == [0, 1, 2]
    assert [str(i.key) for i in out] == ["[0]", "[1]", "[2]"]
    assert out[2].bindings("count") == {"count": {"index": 2}}


def test_count_zero_and_integral_float():
    _require_imports()
    assert expand("count", 0, declaration="a_b.c", max_expansion=10) == []
    assert _keys(expand("count", 2.0, declaration="a_b.c", max_expansion=10)) == [0, 1]


@pytest.mark.parametrize("value", [-1, 1.5, "3", True, None, [1]])
def test_count_rejects_non_natural_numbers(value):
    _require_imports()
    with pytest.raises(TypeMismatchError):
        expand("count", value, declaration="a_b.c", max_expansion=10)


def test_for_each_map():
    _require_imports()
    out = expand("for_each", {"b": {"size": 2}, "a": {"size": 1}}, declaration="a_b.c", max_expansion=10)
    assert _keys(out) == ["a", "b"]
    assert str(out[0].key) == '["a"]'
    assert out[0].bindings("for_each") == {"each": {"key": "a", "value": {"size": 1}}}


def test_for_each_set_uses_element_as_key_and_value():
    _require_imports()
    out = expand("for_each", make_set(["y", "x"]), declaration="a_b.c", max_expansion=10)
    assert _keys(out) == ["x", "y"]
    assert out[1].each_value == "y"


def test_for_each_set_of_numbers_renders_keys():
    _require_imports()
    out = expand("for_each", make_set([2, 10]), declaration="a_b.c", max_expansion=10)
    assert _keys(out) == ["10", "2"]


def test_for_each_list_is_rejected():
    """
    Listas exigem conversão explícita com `toset(...)`.
    """
    _require_imports()
    with pytest.raises(TypeMismatchError) as exc:
        expand("for_each", ["a", "b"], declaration="a_b.c", max_expansion=10)
    assert exc.value.details["received"] == "list"


def test_for_each_rejects_scalars():
    _require_imports()
    with pytest.raises(TypeMismatchError):
        expand("for_each", "a", declaration="a_b.c", max_expansion=10)


def test_for_each_colliding_keys():
    _require_imports()
    with pytest.raises(DuplicateKeyError):
        expand("for_each", make_set([1, "1"]), declaration="a_b.c", max_expansion=10)


def test_for_each_set_of_bool_and_number_keeps_both():
    """
    Verifica que `true` e `2` geram duas instâncias com chaves distintas.
    """
    _require_imports()
    out = expand("for_each", make_set([True, 2]), declaration="a_b.c", max_expansion=10)
    assert _keys(out) == ["2", "true"]
    assert [i.each_value for i in out] == [2, True]


@pytest.mark.parametrize("kind", ["count", "for_each"])
def test_unknown_directive_value(kind):
    _require_imports()
    with pytest.raises(UnknownValueError):
        expand(kind, UNKNOWN, declaration="a_b.c", max_expansion=10)


def test_expansion_limit():
    _require_imports()
    with pytest.raises(ExpansionLimitError) as exc:
        expand("count", 11, declaration="a_b.c", max_expansion=10)
    assert exc.value.details["instances"] == 11
    assert expand("count", 10, declaration="a_b.c", max_expansion=10)[-1].key == InstanceKey(9)


def test_instance_key_sort_order():
    _require_imports()
    keys = [InstanceKey("b"), InstanceKey(1), NO_KEY, InstanceKey(0), InstanceKey("a")]
    assert sorted(keys, key=lambda k: k.sort_key()) == [NO_KEY, InstanceKey(0), InstanceKey(1), InstanceKey("a"), InstanceKey("b")]
