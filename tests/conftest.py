"""Pytest fixtures for the Creative Studio Pulumi program."""

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import pulumi  # noqa: E402

from config import ProjectConfig  # noqa: E402


class StudioMocks(pulumi.runtime.Mocks):
    """Echo inputs back as state and fill in the computed outputs the program reads."""

    def __init__(self):
        self.created = []

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        self.created.append(args)
        outputs = dict(args.inputs)
        if args.typ == "gcp:cloudrunv2/service:Service":
            service_name = args.inputs.get("name", args.name)
            outputs["urls"] = [
                f"https://{service_name}-123456789.us-central1.run.app",
                f"https://{service_name}-abcdefghij-uc.a.run.app",
            ]
            outputs["uri"] = outputs["urls"][1]
        elif args.typ == "gcp:serviceaccount/account:Account":
            account_id = args.inputs.get("accountId") or args.inputs.get("account_id")
            outputs["email"] = f"{account_id}@{args.inputs['project']}.iam.gserviceaccount.com"
            outputs["name"] = f"projects/{args.inputs['project']}/serviceAccounts/{outputs['email']}"
        elif args.typ == "gcp:projects/serviceIdentity:ServiceIdentity":
            outputs["email"] = "service-123456789@gcp-sa-iap.iam.gserviceaccount.com"
        elif args.typ == "gcp:artifactregistry/repository:Repository":
            outputs["name"] = args.inputs.get("repositoryId") or args.inputs.get("repository_id")
        elif args.typ == "gcp:compute/globalAddress:GlobalAddress":
            outputs["address"] = "203.0.113.10"
        elif args.typ == "gcp:compute/backendService:BackendService":
            outputs.setdefault("name", args.name)
        return [f"{args.name}_id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        if args.token == "gcp:organizations/getClientConfig:getClientConfig":
            return {
                "accessToken": "test-token",
                "id": "client-config",
                "project": "studio-test",
                "region": "us-central1",
                "zone": "",
            }
        return {}

    def types(self):
        return [resource.typ for resource in self.created]

    def of_type(self, typ):
        return [resource for resource in self.created if resource.typ == typ]


@pytest.fixture
def mocks():
    studio_mocks = StudioMocks()
    pulumi.runtime.set_mocks(studio_mocks, project="creative-studio", stack="test", preview=False)
    return studio_mocks


@pytest.fixture
def make_config():
    """Build a ProjectConfig with test defaults, overridable per test."""

    def _make(**overrides):
        values = {"project_id": "studio-test", "settle_strategy": "fixed", "sleep_time": 0}
        values.update(overrides)
        return ProjectConfig(**values).validate()

    return _make
