"""Tests for the YAML-declared resource builder."""

from types import SimpleNamespace

import pulumi
import pytest

from config import GCPResource
from resources import GCPResourceBuilder, get_lookup_params, resolve_value, to_snake_case


def _builder(resources=None, region="us-central1"):
    return GCPResourceBuilder(
        project="studio-test",
        region=region,
        labels={"app": "creative-studio"},
        prefix="creative-studio",
        resources=resources if resources is not None else {},
    )


class TestHelpers:
    def test_to_snake_case(self):
        assert to_snake_case("ManagedSslCertificate") == "managed_ssl_certificate"
        assert to_snake_case("Bucket") == "bucket"

    def test_resolve_plain_values(self):
        assert resolve_value("plain", {}) == "plain"
        assert resolve_value(3, {}) == 3
        assert resolve_value({"a": ["x", {"b": "y"}]}, {}) == {"a": ["x", {"b": "y"}]}

    def test_resolve_reference(self):
        resources = {"bucket": SimpleNamespace(id="bucket-id", url="gs://bucket")}

        assert resolve_value("ref:bucket", resources) == "bucket-id"
        assert resolve_value("ref:bucket.url", resources) == "gs://bucket"
        assert resolve_value(["ref:bucket.url"], resources) == ["gs://bucket"]

    def test_resolve_unknown_reference(self):
        with pytest.raises(ValueError, match="'missing' not found"):
            resolve_value("ref:missing.name", {})

    def test_resolve_unknown_attribute(self):
        with pytest.raises(ValueError, match="Attribute 'nope'"):
            resolve_value("ref:bucket.nope", {"bucket": SimpleNamespace(id="x")})

    def test_get_lookup_params(self):
        params = get_lookup_params({"name", "projectId"}, {"name": "n", "project_id": "p", "other": 1})

        assert params == {"name": "n", "projectId": "p"}


class TestNaming:
    def test_known_region(self):
        assert _builder().generate_resource_name("jobs") == "creative-studio-usc1-jobs"

    def test_unknown_region_falls_back_to_prefix(self):
        assert _builder(region="antarctica-south1").generate_resource_name("jobs") == "creative-studio-antarctica-jobs"


class TestBuild:
    @pulumi.runtime.test
    def test_builds_declared_resource_with_common_parameters(self, mocks):
        resources = {}
        _builder(resources).build([
            GCPResource(name="exports", type="storage.Bucket", args={"force_destroy": True}),
        ])

        bucket = resources["exports"]

        def check(args):
            project, location, labels = args
            assert project == "studio-test"
            assert location == "us-central1"
            assert labels == {"app": "creative-studio"}
            created = mocks.of_type("gcp:storage/bucket:Bucket")
            assert [r.name for r in created] == ["creative-studio-usc1-exports"]

        return pulumi.Output.all(bucket.project, bucket.location, bucket.labels).apply(check)

    @pulumi.runtime.test
    def test_reference_to_earlier_declaration(self, mocks):
        resources = {}
        _builder(resources).build([
            GCPResource(name="jobs", type="pubsub.Topic", args={"name": "jobs"}, custom_name="jobs-topic"),
            GCPResource(name="jobs_sub", type="pubsub.Subscription", args={"topic": "ref:jobs.name"}),
        ])

        def check(topic):
            assert topic == "jobs"
            assert [r.name for r in mocks.of_type("gcp:pubsub/topic:Topic")] == ["jobs-topic"]

        return resources["jobs_sub"].topic.apply(check)

    def test_unknown_module_is_skipped(self, mocks):
        resources = {}
        _builder(resources).build([GCPResource(name="thing", type="nosuchmodule.Thing")])

        assert resources == {}

    def test_unknown_class_is_skipped(self, mocks):
        resources = {}
        _builder(resources).build([GCPResource(name="thing", type="storage.NoSuchThing")])

        assert resources == {}

    @pulumi.runtime.test
    def test_argument_values_stay_out_of_the_log(self, mocks, monkeypatch):
        """Declared args may carry secrets; only their names are logged, and only at debug."""
        messages = {"info": [], "debug": []}
        monkeypatch.setattr(pulumi.log, "info", lambda msg, *a, **k: messages["info"].append(msg))
        monkeypatch.setattr(pulumi.log, "debug", lambda msg, *a, **k: messages["debug"].append(msg))

        _builder().build([
            GCPResource(
                name="jobs",
                type="pubsub.Topic",
                args={"name": "jobs", "kms_key_name": "projects/studio-test/keys/hunter2"},
                custom_name="jobs-topic",
            ),
        ])

        assert messages["info"] == ["Created resource: jobs-topic (pubsub.Topic)"]
        assert not any("hunter2" in msg for msg in messages["info"] + messages["debug"])
        assert any("kms_key_name" in msg and "name" in msg for msg in messages["debug"])
