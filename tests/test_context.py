"""Tests for the variable context builder."""

from apptemplate_controller.context import build_context
from apptemplate_controller.models import AppTemplateSpec


def make_spec(**overrides):
    raw = {
        "serviceName": "foo",
        "configsToUse": "base",
        "templateVariables": '{"replicas": "2"}',
    }
    raw.update(overrides)
    return AppTemplateSpec.from_dict(raw)


class TestBuildContext:
    def test_merges_all_sources(self):
        context = build_context(make_spec(), environ={"REGION": "eu-west-1"})
        assert context["REGION"] == "eu-west-1"
        assert context["serviceName"] == "foo"
        assert context["replicas"] == "2"

    def test_spec_overrides_environment(self):
        context = build_context(make_spec(), environ={"serviceName": "from-env"})
        assert context["serviceName"] == "foo"

    def test_variables_override_spec_fields(self):
        spec = make_spec(templateVariables='{"serviceName": "renamed"}')
        assert build_context(spec, environ={})["serviceName"] == "renamed"

    def test_variables_override_environment(self):
        context = build_context(make_spec(), environ={"replicas": "9"})
        assert context["replicas"] == "2"

    def test_only_scalar_spec_fields(self):
        spec = make_spec(enabled=True, port=8080, labels={"a": "b"}, hosts=["x"])
        context = build_context(spec, environ={})
        assert context["enabled"] == "true"
        assert context["port"] == "8080"
        assert "labels" not in context
        assert "hosts" not in context

    def test_environment_can_be_excluded(self, monkeypatch):
        monkeypatch.setenv("SHOULD_NOT_LEAK", "1")
        context = build_context(make_spec(), include_environment=False)
        assert "SHOULD_NOT_LEAK" not in context

    def test_defaults_to_process_environment(self, monkeypatch):
        monkeypatch.setenv("CLUSTER_DOMAIN", "cluster.local")
        assert build_context(make_spec())["CLUSTER_DOMAIN"] == "cluster.local"

    def test_absent_keys_are_absent(self):
        assert "image" not in build_context(make_spec(), environ={})
