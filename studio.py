import pulumi
import pulumi_gcp as gcp
from typing import Any, Dict, List, Optional

from config import ProjectConfig
from load_balancer import LoadBalancerComponent
from readiness import ApiReadinessGate
from resources import GCPResourceBuilder, resolve_value
from topology import derive_topology, resource_presence

REQUIRED_SERVICES = [
    "aiplatform.googleapis.com",
    "artifactregistry.googleapis.com",
    "cloudbuild.googleapis.com",
    "cloudresourcemanager.googleapis.com",
    "compute.googleapis.com",
    "firestore.googleapis.com",
    "iam.googleapis.com",
    "iamcredentials.googleapis.com",
    "iap.googleapis.com",
    "run.googleapis.com",
    "storage.googleapis.com",
]

BUILD_PROJECT_ROLES = [
    "roles/run.developer",
    "roles/logging.logWriter",
    "roles/storage.objectViewer",
]

RUNTIME_PROJECT_ROLES = [
    "roles/aiplatform.user",
    "roles/datastore.user",
]


def _role_suffix(role: str) -> str:
    return role.split("/", 1)[1].replace(".", "-").lower()


class CreativeStudioBuilder:
    """
    Declares the Creative Studio stack for one ProjectConfig.

    ``resources`` maps a stable short name to every resource declared, so
    guarded resources are simply missing from it when their guard is off.
    """

    def __init__(self, config: ProjectConfig):
        self.config = config
        self.topology = derive_topology(config)
        self.presence = resource_presence(config)
        self.resources: Dict[str, Any] = {}
        self.load_balancer: Optional[LoadBalancerComponent] = None
        self.deployed_domain: Optional[pulumi.Output] = None
        self.cors_origins: Optional[pulumi.Output] = None

    @property
    def _after_apis(self) -> pulumi.ResourceOptions:
        return pulumi.ResourceOptions(depends_on=[self.resources["apis_ready"]])

    def _member(self, account: gcp.serviceaccount.Account) -> pulumi.Output:
        return pulumi.Output.concat("serviceAccount:", account.email)

    def enable_apis(self) -> None:
        cfg = self.config
        services: List[gcp.projects.Service] = []
        for api in REQUIRED_SERVICES:
            key = f"api_{api.split('.')[0]}"
            service = gcp.projects.Service(
                f"{cfg.service_name}-{key.replace('_', '-')}",
                project=cfg.project_id,
                service=api,
                disable_on_destroy=False,
            )
            self.resources[key] = service
            services.append(service)

        client_config = gcp.organizations.get_client_config_output()
        self.resources["apis_ready"] = ApiReadinessGate(
            f"{cfg.service_name}-apis-ready",
            project=cfg.project_id,
            services=list(REQUIRED_SERVICES),
            strategy=cfg.settle_strategy,
            sleep_time=cfg.sleep_time,
            timeout=cfg.readiness_timeout,
            access_token=client_config.access_token,
            opts=pulumi.ResourceOptions(depends_on=services),
        )
        pulumi.log.info(f"Enabling {len(services)} services ({cfg.settle_strategy} readiness)")

    def create_service_accounts(self) -> None:
        cfg = self.config
        self.resources["runtime_sa"] = gcp.serviceaccount.Account(
            f"{cfg.service_name}-runtime-sa",
            project=cfg.project_id,
            account_id=f"service-{cfg.service_name}",
            display_name=f"{cfg.service_name} Cloud Run service account",
            opts=self._after_apis,
        )
        self.resources["build_sa"] = gcp.serviceaccount.Account(
            f"{cfg.service_name}-build-sa",
            project=cfg.project_id,
            account_id=f"builds-{cfg.service_name}",
            display_name=f"{cfg.service_name} Cloud Build service account",
            opts=self._after_apis,
        )

        runtime_member = self._member(self.resources["runtime_sa"])
        for role in RUNTIME_PROJECT_ROLES:
            self.resources[f"runtime_{_role_suffix(role)}"] = gcp.projects.IAMMember(
                f"{cfg.service_name}-runtime-{_role_suffix(role)}",
                project=cfg.project_id,
                role=role,
                member=runtime_member,
            )
        # signing download URLs requires the runtime account to mint tokens for itself
        self.resources["runtime_token_creator"] = gcp.serviceaccount.IAMMember(
            f"{cfg.service_name}-runtime-token-creator",
            service_account_id=self.resources["runtime_sa"].name,
            role="roles/iam.serviceAccountTokenCreator",
            member=runtime_member,
        )

    def create_registry(self) -> None:
        cfg = self.config
        build_member = self._member(self.resources["build_sa"])
        repository = gcp.artifactregistry.Repository(
            f"{cfg.service_name}-repository",
            project=cfg.project_id,
            location=cfg.region,
            repository_id=cfg.service_name,
            format="DOCKER",
            description=f"Container images for {cfg.service_name}",
            labels=cfg.labels or None,
            opts=self._after_apis,
        )
        self.resources["repository"] = repository
        self.resources["build_registry_writer"] = gcp.artifactregistry.RepositoryIamMember(
            f"{cfg.service_name}-build-registry-writer",
            project=cfg.project_id,
            location=cfg.region,
            repository=repository.name,
            role="roles/artifactregistry.writer",
            member=build_member,
        )
        for role in BUILD_PROJECT_ROLES:
            self.resources[f"build_{_role_suffix(role)}"] = gcp.projects.IAMMember(
                f"{cfg.service_name}-build-{_role_suffix(role)}",
                project=cfg.project_id,
                role=role,
                member=build_member,
            )
        # deploying a revision means acting as the runtime account
        self.resources["build_acts_as_runtime"] = gcp.serviceaccount.IAMMember(
            f"{cfg.service_name}-build-acts-as-runtime",
            service_account_id=self.resources["runtime_sa"].name,
            role="roles/iam.serviceAccountUser",
            member=build_member,
        )

    def create_database(self) -> None:
        cfg = self.config
        database = gcp.firestore.Database(
            f"{cfg.service_name}-firestore",
            project=cfg.project_id,
            name=cfg.firestore_database,
            location_id=cfg.firestore_location,
            type="FIRESTORE_NATIVE",
            deletion_policy="DELETE" if cfg.enable_data_deletion else "ABANDON",
            delete_protection_state=(
                "DELETE_PROTECTION_DISABLED" if cfg.enable_data_deletion
                else "DELETE_PROTECTION_ENABLED"
            ),
            opts=self._after_apis,
        )
        self.resources["database"] = database
        for i, index in enumerate(cfg.firestore_indexes):
            self.resources[f"index_{index.collection}_{i}"] = gcp.firestore.Index(
                f"{cfg.service_name}-index-{index.collection}-{i}",
                project=cfg.project_id,
                database=database.name,
                collection=index.collection,
                query_scope=index.query_scope,
                fields=[{"field_path": f.field_path, "order": f.order} for f in index.fields],
            )

    def _service_env(self) -> List[Dict[str, Any]]:
        cfg = self.config
        env = {
            "PROJECT_ID": cfg.project_id,
            "LOCATION": cfg.region,
            "MODEL_ID": cfg.model_id,
            "GEMINI_MODEL_ID": cfg.gemini_model_id,
            "VEO_MODEL_ID": cfg.veo_model_id,
            "VEO_EXP_MODEL_ID": cfg.veo_exp_model_id,
            "LYRIA_MODEL_ID": cfg.lyria_model_id,
            "GENMEDIA_BUCKET": cfg.bucket_name,
            "GENMEDIA_FIREBASE_DB": cfg.firestore_database,
            "SERVICE_ACCOUNT_EMAIL": self.resources["runtime_sa"].email,
        }
        for name, value in cfg.env.items():
            env[name] = resolve_value(value, self.resources)
        return [{"name": name, "value": value} for name, value in env.items()]

    def create_service(self) -> None:
        cfg = self.config
        topology = self.topology
        service = gcp.cloudrunv2.Service(
            f"{cfg.service_name}-service",
            project=cfg.project_id,
            location=cfg.region,
            name=cfg.service_name,
            ingress=topology.ingress_mode.cloud_run_value,
            launch_stage=topology.launch_stage.value,
            iap_enabled=topology.iap_enabled,
            invoker_iam_disabled=topology.invoker_iam_disabled,
            deletion_protection=not cfg.enable_data_deletion,
            labels=cfg.labels or None,
            template={
                "service_account": self.resources["runtime_sa"].email,
                "containers": [{
                    "image": cfg.container_image,
                    "envs": self._service_env(),
                }],
            },
            opts=pulumi.ResourceOptions(
                depends_on=[self.resources["apis_ready"], self.resources["database"]],
                # images are rolled out by Cloud Build, not by this stack
                ignore_changes=["template.containers[0].image"],
            ),
        )
        self.resources["service"] = service

        topologies = service.urls.apply(lambda urls: derive_topology(cfg, urls or []))
        self.deployed_domain = topologies.apply(lambda t: t.deployed_domain)
        self.cors_origins = topologies.apply(lambda t: t.cors_origins)

    def create_bucket(self) -> None:
        cfg = self.config
        bucket = gcp.storage.Bucket(
            f"{cfg.service_name}-assets",
            project=cfg.project_id,
            name=cfg.bucket_name,
            location=cfg.region,
            uniform_bucket_level_access=True,
            force_destroy=cfg.enable_data_deletion,
            labels=cfg.labels or None,
            cors=[{
                "origins": self.cors_origins,
                "methods": ["GET"],
                "response_headers": ["Content-Type"],
                "max_age_seconds": 3600,
            }],
            opts=self._after_apis,
        )
        self.resources["bucket"] = bucket
        self.resources["bucket_object_admin"] = gcp.storage.BucketIAMMember(
            f"{cfg.service_name}-assets-object-admin",
            bucket=bucket.name,
            role="roles/storage.objectAdmin",
            member=self._member(self.resources["runtime_sa"]),
        )

    def grant_invoker_access(self) -> None:
        """Let the IAP service agent call the service whenever invoker IAM is enforced."""
        if not self.presence.iap_invoker_grant:
            return
        cfg = self.config
        iap_agent = gcp.projects.ServiceIdentity(
            f"{cfg.service_name}-iap-agent",
            project=cfg.project_id,
            service="iap.googleapis.com",
            opts=self._after_apis,
        )
        self.resources["iap_agent"] = iap_agent
        self.resources["iap_invoker"] = gcp.cloudrunv2.ServiceIamMember(
            f"{cfg.service_name}-iap-invoker",
            project=cfg.project_id,
            location=cfg.region,
            name=self.resources["service"].name,
            role="roles/run.invoker",
            member=pulumi.Output.concat("serviceAccount:", iap_agent.email),
        )

    def create_load_balancer(self) -> None:
        if not self.presence.load_balancer:
            return
        cfg = self.config
        self.load_balancer = LoadBalancerComponent(
            f"{cfg.service_name}-lb",
            project=cfg.project_id,
            region=cfg.region,
            domain=cfg.domain,
            service_name=self.resources["service"].name,
            initial_user=cfg.initial_user,
            opts=self._after_apis,
        )
        lb = self.load_balancer
        self.resources["serverless_neg"] = lb.serverless_neg
        self.resources["backend_service"] = lb.backend_service
        self.resources["certificate"] = lb.certificate
        self.resources["lb_address"] = lb.address
        if lb.initial_user_access is not None:
            self.resources["iap_initial_user"] = lb.initial_user_access

    def build_extra_resources(self) -> None:
        cfg = self.config
        if not cfg.gcp_resources:
            return
        builder = GCPResourceBuilder(
            project=cfg.project_id,
            region=cfg.region,
            labels=cfg.labels,
            prefix=cfg.service_name,
            resources=self.resources,
        )
        builder.build(cfg.gcp_resources, opts=self._after_apis)

    def build(self) -> None:
        self.enable_apis()
        self.create_service_accounts()
        self.create_registry()
        self.create_database()
        self.create_service()
        self.create_bucket()
        self.grant_invoker_access()
        self.create_load_balancer()
        self.build_extra_resources()
        pulumi.log.info(
            f"Declared {len(self.resources)} resources for '{self.config.service_name}' "
            f"(load balancer: {'on' if self.presence.load_balancer else 'off'})"
        )
