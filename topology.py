"""
Topology selection for the Creative Studio deployment.

Everything here is a pure function of ProjectConfig: which ingress path the
service accepts, where IAP sits, whether invoker IAM is enforced and which
load balancer resources exist at all.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence

from config import ProjectConfig

LOCAL_CORS_ORIGINS = ["http://localhost:8080", "http://0.0.0.0:8080"]


class IngressMode(str, Enum):
    INTERNAL_LB = "INTERNAL_LB"
    ALL = "ALL"

    @property
    def cloud_run_value(self) -> str:
        if self is IngressMode.INTERNAL_LB:
            return "INGRESS_TRAFFIC_INTERNAL_LOAD_BALANCER"
        return "INGRESS_TRAFFIC_ALL"


class LaunchStage(str, Enum):
    GA = "GA"
    BETA = "BETA"


@dataclass(frozen=True)
class DerivedTopology:
    ingress_mode: IngressMode
    iap_enabled: bool
    invoker_iam_disabled: bool
    launch_stage: LaunchStage
    deployed_domain: List[str]
    cors_origins: List[str]


@dataclass(frozen=True)
class ResourcePresence:
    load_balancer: bool
    serverless_neg: bool
    managed_certificate: bool
    backend_service: bool
    iap_initial_user_grant: bool
    iap_invoker_grant: bool


def deployed_domain(config: ProjectConfig, service_urls: Sequence[str] = ()) -> List[str]:
    """URLs users reach the app on: the LB domain, or the service's own URLs."""
    if config.use_lb:
        return [f"https://{config.domain}"]
    return list(service_urls or [])


def cors_origins(config: ProjectConfig, domains: Sequence[str]) -> List[str]:
    origins = list(domains)
    if config.allow_local_domain_cors_requests:
        origins.extend(LOCAL_CORS_ORIGINS)
    return origins


def derive_topology(config: ProjectConfig, service_urls: Sequence[str] = ()) -> DerivedTopology:
    """
    Derive the topology for one evaluation pass.

    service_urls are the URLs Cloud Run generated for the service; they only
    matter when no load balancer fronts it.
    """
    use_lb = config.use_lb
    domains = deployed_domain(config, service_urls)
    return DerivedTopology(
        ingress_mode=IngressMode.INTERNAL_LB if use_lb else IngressMode.ALL,
        # with a load balancer IAP is enabled on the backend service instead
        iap_enabled=not use_lb,
        invoker_iam_disabled=(not use_lb) and (not config.enable_invoker_iam),
        launch_stage=LaunchStage.GA if use_lb else LaunchStage.BETA,
        deployed_domain=domains,
        cors_origins=cors_origins(config, domains),
    )


def resource_presence(config: ProjectConfig) -> ResourcePresence:
    use_lb = config.use_lb
    topology = derive_topology(config)
    return ResourcePresence(
        load_balancer=use_lb,
        serverless_neg=use_lb,
        managed_certificate=use_lb,
        backend_service=use_lb,
        iap_initial_user_grant=use_lb and config.initial_user is not None,
        iap_invoker_grant=not topology.invoker_iam_disabled,
    )
