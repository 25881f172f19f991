"""
External HTTPS load balancer in front of the Cloud Run service.

Serverless NEG -> backend service (IAP on) -> URL map -> HTTPS proxy with a
Google-managed certificate -> global forwarding rule on a reserved address,
plus a port 80 rule that only redirects to HTTPS.

The component is only instantiated when use_lb is set; nothing here is
ever declared with an empty configuration.
"""

from dataclasses import dataclass
from typing import Optional

import pulumi
import pulumi_gcp as gcp


@dataclass
class LoadBalancerOutputs:
    """Output values from the load balancer component."""
    ip_address: pulumi.Output[str]
    backend_service_name: pulumi.Output[str]
    certificate_id: pulumi.Output[str]


class LoadBalancerComponent(pulumi.ComponentResource):
    def __init__(
        self,
        name: str,
        project: str,
        region: str,
        domain: str,
        service_name: pulumi.Input[str],
        initial_user: Optional[str] = None,
        opts: Optional[pulumi.ResourceOptions] = None,
    ) -> None:
        super().__init__("creative-studio:network:LoadBalancer", name, None, opts)

        # children do not inherit depends_on from the component
        child_opts = pulumi.ResourceOptions(parent=self, depends_on=opts.depends_on if opts else None)

        self.serverless_neg = gcp.compute.RegionNetworkEndpointGroup(
            f"{name}-neg",
            project=project,
            region=region,
            network_endpoint_type="SERVERLESS",
            cloud_run={"service": service_name},
            opts=child_opts,
        )

        self.backend_service = gcp.compute.BackendService(
            f"{name}-backend",
            project=project,
            protocol="HTTPS",
            load_balancing_scheme="EXTERNAL_MANAGED",
            backends=[{"group": self.serverless_neg.id}],
            iap={"enabled": True},
            opts=child_opts,
        )

        self.certificate = gcp.compute.ManagedSslCertificate(
            f"{name}-cert",
            project=project,
            managed={"domains": [domain]},
            opts=child_opts,
        )

        self.url_map = gcp.compute.URLMap(
            f"{name}-url-map",
            project=project,
            default_service=self.backend_service.id,
            opts=child_opts,
        )

        self.https_proxy = gcp.compute.TargetHttpsProxy(
            f"{name}-https-proxy",
            project=project,
            url_map=self.url_map.id,
            ssl_certificates=[self.certificate.id],
            opts=child_opts,
        )

        self.address = gcp.compute.GlobalAddress(
            f"{name}-address",
            project=project,
            opts=child_opts,
        )

        self.https_rule = gcp.compute.GlobalForwardingRule(
            f"{name}-https",
            project=project,
            target=self.https_proxy.id,
            ip_address=self.address.address,
            port_range="443",
            load_balancing_scheme="EXTERNAL_MANAGED",
            opts=child_opts,
        )

        # Plain HTTP only ever answers with a redirect
        self.redirect_map = gcp.compute.URLMap(
            f"{name}-https-redirect",
            project=project,
            default_url_redirect={
                "https_redirect": True,
                "strip_query": False,
                "redirect_response_code": "MOVED_PERMANENTLY_DEFAULT",
            },
            opts=child_opts,
        )

        self.http_proxy = gcp.compute.TargetHttpProxy(
            f"{name}-http-proxy",
            project=project,
            url_map=self.redirect_map.id,
            opts=child_opts,
        )

        self.http_rule = gcp.compute.GlobalForwardingRule(
            f"{name}-http",
            project=project,
            target=self.http_proxy.id,
            ip_address=self.address.address,
            port_range="80",
            load_balancing_scheme="EXTERNAL_MANAGED",
            opts=child_opts,
        )

        self.initial_user_access = None
        if initial_user is not None:
            self.initial_user_access = gcp.iap.WebBackendServiceIamMember(
                f"{name}-iap-initial-user",
                project=project,
                web_backend_service=self.backend_service.name,
                role="roles/iap.httpsResourceAccessor",
                member=f"user:{initial_user}",
                opts=child_opts,
            )

        self.register_outputs({
            "ip_address": self.address.address,
            "backend_service_name": self.backend_service.name,
            "certificate_id": self.certificate.id,
        })

    def get_outputs(self) -> LoadBalancerOutputs:
        """Get load balancer output values."""
        return LoadBalancerOutputs(
            ip_address=self.address.address,
            backend_service_name=self.backend_service.name,
            certificate_id=self.certificate.id,
        )
