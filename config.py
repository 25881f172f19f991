"""
This module defines the data structures for our configuration and the
loader that turns config.yaml into them.
"""

import yaml
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SETTLE_STRATEGIES = ("poll", "fixed")
DEFAULT_CONTAINER_IMAGE = "us-docker.pkg.dev/cloudrun/container/hello"

REQUIRED_KEYS = ["project_id"]

BOOL_FIELDS = ("use_lb", "enable_invoker_iam", "enable_data_deletion", "allow_local_domain_cors_requests")
INT_FIELDS = ("sleep_time", "readiness_timeout")
STR_FIELDS = (
    "project_id", "region", "domain", "service_name", "container_image", "settle_strategy",
    "gemini_model_id", "model_id", "veo_model_id", "veo_exp_model_id", "lyria_model_id",
    "firestore_database", "firestore_location",
)


class ConfigurationError(ValueError):
    """Raised when config.yaml describes a deployment that cannot be built."""


@dataclass(frozen=True)
class GCPResource:
    name: str
    type: str
    args: Dict[str, Any] = field(default_factory=dict)
    custom_name: Optional[str] = None


@dataclass(frozen=True)
class IndexField:
    field_path: str
    order: str = "ASCENDING"


@dataclass(frozen=True)
class FirestoreIndex:
    collection: str
    fields: List[IndexField]
    query_scope: str = "COLLECTION"


@dataclass(frozen=True)
class ProjectConfig:
    project_id: str
    region: str = "us-central1"
    domain: str = ""
    initial_user: Optional[str] = None
    use_lb: bool = False
    enable_invoker_iam: bool = False
    gemini_model_id: str = "gemini-2.5-flash"
    model_id: str = "imagen-4.0-generate-001"
    veo_model_id: str = "veo-3.0-generate-001"
    veo_exp_model_id: str = "veo-3.0-fast-generate-001"
    lyria_model_id: str = "lyria-002"
    sleep_time: int = 45
    enable_data_deletion: bool = False
    allow_local_domain_cors_requests: bool = False
    service_name: str = "creative-studio"
    container_image: str = DEFAULT_CONTAINER_IMAGE
    firestore_database: str = "create-studio-asset-metadata"
    firestore_location: str = "nam5"
    settle_strategy: str = "poll"
    readiness_timeout: int = 300
    labels: Dict[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    firestore_indexes: List[FirestoreIndex] = field(default_factory=list)
    gcp_resources: List[GCPResource] = field(default_factory=list)

    @property
    def bucket_name(self) -> str:
        return f"{self.project_id}-{self.service_name}-assets"

    def validate(self) -> "ProjectConfig":
        """Fail fast on settings that would only break much later at the provider."""
        for name in BOOL_FIELDS:
            if not isinstance(getattr(self, name), bool):
                raise ConfigurationError(f"{name} must be true or false, got {getattr(self, name)!r}")
        for name in INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
        for name in STR_FIELDS:
            if not isinstance(getattr(self, name), str):
                raise ConfigurationError(f"{name} must be a string, got {getattr(self, name)!r}")
        if self.initial_user is not None:
            if not isinstance(self.initial_user, str):
                raise ConfigurationError(f"initial_user must be a string or null, got {self.initial_user!r}")
            if not self.initial_user.strip():
                raise ConfigurationError("initial_user must be an email address or null, not blank")
        if not self.project_id.strip():
            raise ConfigurationError("project_id must be a non-empty string")
        if self.use_lb and not self.domain.strip():
            raise ConfigurationError(
                "domain is required when use_lb is true; the managed certificate "
                "cannot be issued for an empty domain"
            )
        if self.settle_strategy not in SETTLE_STRATEGIES:
            raise ConfigurationError(
                f"settle_strategy must be one of {', '.join(SETTLE_STRATEGIES)}, "
                f"got '{self.settle_strategy}'"
            )
        if self.sleep_time < 0:
            raise ConfigurationError("sleep_time must not be negative")
        if self.readiness_timeout < 0:
            raise ConfigurationError("readiness_timeout must not be negative")
        return self


def _parse_indexes(raw: List[Dict[str, Any]]) -> List[FirestoreIndex]:
    indexes = []
    for entry in raw or []:
        if "collection" not in entry or not entry.get("fields"):
            raise ConfigurationError(
                f"firestore_indexes entry needs 'collection' and 'fields': {entry}"
            )
        fields = [
            IndexField(field_path=f["field_path"], order=f.get("order", "ASCENDING"))
            for f in entry["fields"]
        ]
        indexes.append(
            FirestoreIndex(
                collection=entry["collection"],
                fields=fields,
                query_scope=entry.get("query_scope", "COLLECTION"),
            )
        )
    return indexes


def _parse_resources(raw: List[Dict[str, Any]]) -> List[GCPResource]:
    resources = []
    for entry in raw or []:
        if "name" not in entry or "type" not in entry:
            raise ConfigurationError(f"gcp_resources entry needs 'name' and 'type': {entry}")
        if "." not in entry["type"]:
            raise ConfigurationError(
                f"gcp_resources type must look like '<module>.<Class>', got '{entry['type']}'"
            )
        resources.append(
            GCPResource(
                name=entry["name"],
                type=entry["type"],
                args=dict(entry.get("args") or {}),
                custom_name=entry.get("custom_name"),
            )
        )
    return resources


def parse_config(config_data: Optional[Dict[str, Any]]) -> ProjectConfig:
    """Build a validated ProjectConfig from already-parsed YAML data."""
    if not config_data:
        raise ConfigurationError("configuration is empty")

    for key in REQUIRED_KEYS:
        if key not in config_data:
            raise ConfigurationError(f"Missing required configuration key: {key}")

    data = dict(config_data)
    indexes = _parse_indexes(data.pop("firestore_indexes", None))
    resources = _parse_resources(data.pop("gcp_resources", None))

    known = set(ProjectConfig.__dataclass_fields__) - {"firestore_indexes", "gcp_resources"}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    for key in ("labels", "env"):
        if data.get(key) is None:
            data.pop(key, None)
        else:
            data[key] = {str(k): str(v) for k, v in data[key].items()}
    if data.get("domain") is None:
        data.pop("domain", None)

    config = ProjectConfig(firestore_indexes=indexes, gcp_resources=resources, **data)
    return config.validate()


def load_config(file_path: str) -> ProjectConfig:
    """Load and validate YAML configuration from the given file path."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file)
    return parse_config(config_data)
