import pytest

from pipeweave.config import Config, convert_value
from pipeweave.errors import SectionError


def test_parse_configs_toml_equals_json():
    toml = """
        [[section]]
        name = "name"
        key = "key"

        [[section]]
        name = "name2"
        value = "value"
    """
    json_text = """
        [
            {"name": "name", "key": "key"},
            {"name": "name2", "value": "value"}
        ]
    """
    json_config = Config.from_json(json_text)
    toml_config = Config.from_toml(toml)
    assert toml_config == json_config
    assert toml_config.sections() == [
        {"name": "name", "key": "key"},
        {"name": "name2", "value": "value"},
    ]


def test_toml_nested_values_survive():
    text = '[[section]]\nname = "a"\nflags = [1, 2]\nopts = { on = true }\n'
    config = Config.from_toml(text)
    assert config.sections() == [{"name": "a", "flags": [1, 2], "opts": {"on": True}}]


def test_toml_without_sections_is_empty():
    assert Config.from_toml('title = "x"\n').sections() == []


def test_json_float_is_rejected():
    with pytest.raises(SectionError):
        Config.from_json('[{"x": 1.5}]')


def test_json_null_is_rejected():
    with pytest.raises(SectionError):
        Config.from_json('[{"x": null}]')


def test_json_integer_out_of_i64_range_is_rejected():
    with pytest.raises(SectionError):
        Config.from_json('[{"x": 9223372036854775808}]')


def test_json_i64_bounds_accepted():
    config = Config.from_json('[{"lo": -9223372036854775808, "hi": 9223372036854775807}]')
    assert config.sections()[0] == {"lo": -(2**63), "hi": 2**63 - 1}


def test_invalid_json_raises_section_error():
    with pytest.raises(SectionError):
        Config.from_json("[{")


def test_invalid_toml_raises_section_error():
    with pytest.raises(SectionError):
        Config.from_toml("[[section]\n")


def test_from_value_requires_array():
    with pytest.raises(SectionError):
        Config.from_value({"name": "a"})


def test_from_value_requires_map_sections():
    with pytest.raises(SectionError):
        Config.from_value(["a"])


def test_convert_value_keeps_bool_distinct_from_int():
    converted = convert_value({"flag": True, "n": 1})
    assert converted["flag"] is True
    assert converted["n"] == 1 and converted["n"] is not True


def test_convert_value_turns_tuples_into_lists():
    assert convert_value(("a", ("b",))) == ["a", ["b"]]


def test_configs_with_different_sections_differ():
    first = Config.from_json('[{"name": "a"}]')
    second = Config.from_json('[{"name": "b"}]')
    assert not first == second


def test_sections_returns_copy_of_list():
    config = Config.from_json('[{"name": "a"}]')
    config.sections().append({"name": "b"})
    assert len(config.sections()) == 1