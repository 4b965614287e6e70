import json

import pytest

from llmrelay.adapters import Adapter, load_adapter
from llmrelay.adapters.env import replace_placeholders, resolve_env_value, set_env_vars
from tests.mocks.adapters import TEST_URL, make_adapter


def test_env_var_resolution_from_environment():
    adapter = make_adapter()
    assert adapter.get_env_vars() == {"api_key": "test-key"}
    assert adapter.set_env_vars(adapter.headers) == {"Authorization": "Bearer test-key"}


def test_env_literal_and_callable_sources():
    adapter = make_adapter(
        env={
            "region": "eu-west-1",
            "deployment": lambda adapter: f"{adapter.name}-deployment",
        },
        url="https://${region}.api.test.local/${deployment}",
    )
    adapter.get_env_vars()
    assert adapter.set_env_vars(adapter.url) == "https://eu-west-1.api.test.local/test-deployment"


def test_env_command_source():
    adapter = make_adapter(env={"token": "cmd: echo secret-token"})
    assert adapter.get_env_vars() == {"token": "secret-token"}


def test_env_failing_command_is_left_unresolved():
    adapter = make_adapter(
        env={"token": "cmd: exit 3"},
        headers={"Authorization": "Bearer ${token}"},
    )
    assert adapter.get_env_vars() == {}
    assert adapter.set_env_vars(adapter.headers) == {"Authorization": "Bearer ${token}"}


def test_env_schema_source_calls_model_factory():
    adapter = make_adapter(
        env={"model": "schema.model.default"},
        schema={"model": {"default": lambda: "factory-model"}},
    )
    assert adapter.get_env_vars() == {"model": "factory-model"}
    assert adapter.resolve_model() == "factory-model"


def test_set_env_vars_walks_nested_values():
    env = {"key": "abc"}
    value = {"a": ["${key}", {"b": "x-${key}"}], "n": 1, "t": ("${key}",)}
    assert set_env_vars(value, env=env) == {"a": ["abc", {"b": "x-abc"}], "n": 1, "t": ("abc",)}


def test_replace_placeholders_keeps_unknown_names():
    assert replace_placeholders(text="${known}/${unknown}", env={"known": "k"}) == "k/${unknown}"


def test_resolve_env_value_prefers_environment_over_schema(monkeypatch):
    monkeypatch.setenv("schema.model.default", "from-env")
    adapter = make_adapter()
    assert resolve_env_value(adapter=adapter, source="schema.model.default") == "from-env"


def test_env_values_are_per_copy():
    adapter = make_adapter()
    copy = adapter.model_copy(deep=True)
    copy.get_env_vars()
    assert copy.env_replaced == {"api_key": "test-key"}
    assert adapter.env_replaced == {}


def test_summary_reports_resolved_model():
    summary = make_adapter().summary()
    assert summary.name == "test"
    assert summary.formatted_name == "Test"
    assert summary.model == "test-model"


def test_load_adapter_from_json_file(tmp_path):
    path = tmp_path / "adapter.json"
    path.write_text(
        json.dumps(
            {
                "name": "json",
                "url": TEST_URL,
                "opts": {"stream": True, "method": "PUT"},
                "raw": ["--max-time", "30"],
                "schema": {"model": {"default": "json-model"}},
            }
        )
    )
    adapter = load_adapter(str(path))
    assert isinstance(adapter, Adapter)
    assert adapter.opts.stream is True
    assert adapter.opts.method == "PUT"
    assert adapter.raw == ["--max-time", "30"]
    assert adapter.resolve_model() == "json-model"


def test_load_adapter_from_import_reference():
    adapter = load_adapter("tests.mocks.adapters:openai_adapter")
    assert adapter.name == "openai"

    adapter = load_adapter("tests.mocks.adapters:failing_adapter")
    assert adapter.name == "failing"


@pytest.mark.parametrize(
    "reference, error",
    [
        ("tests.mocks.adapters", ValueError),
        ("tests.mocks.adapters:TEST_URL", TypeError),
        ("tests.mocks.adapters:missing", AttributeError),
    ],
)
def test_load_adapter_rejects_invalid_references(reference, error):
    with pytest.raises(error):
        load_adapter(reference)
