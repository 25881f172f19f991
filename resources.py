import pulumi
import pulumi_gcp as gcp
import inspect
import re
from typing import Any, Dict, List

from config import GCPResource

GCP_REGION_ABBREVIATIONS = {
    "us-central1": "usc1",
    "us-east1": "use1",
    "us-east4": "use4",
    "us-east5": "use5",
    "us-south1": "uss1",
    "us-west1": "usw1",
    "us-west2": "usw2",
    "us-west3": "usw3",
    "us-west4": "usw4",
    "northamerica-northeast1": "nane1",
    "northamerica-northeast2": "nane2",
    "southamerica-east1": "sae1",
    "europe-north1": "eun1",
    "europe-west1": "euw1",
    "europe-west2": "euw2",
    "europe-west3": "euw3",
    "europe-west4": "euw4",
    "europe-west6": "euw6",
    "europe-west9": "euw9",
    "europe-southwest1": "eusw1",
    "europe-central2": "euc2",
    "asia-east1": "ase1",
    "asia-east2": "ase2",
    "asia-northeast1": "asne1",
    "asia-northeast3": "asne3",
    "asia-south1": "ass1",
    "asia-southeast1": "asse1",
    "australia-southeast1": "ause1",
    "me-west1": "mew1",
}


def to_snake_case(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def resolve_value(value: Any, resources: Dict[str, Any]) -> Any:
    if isinstance(value, dict):
        return {k: resolve_value(v, resources) for k, v in value.items()}
    elif isinstance(value, list):
        return [resolve_value(item, resources) for item in value]
    elif isinstance(value, str):
        if value.startswith("secret:"):
            # Fetch secret from Pulumi config
            secret_key = value[len("secret:"):]
            config = pulumi.Config()
            return config.require_secret(secret_key)
        elif value.startswith("ref:"):
            ref_text = value[4:]
            if "." in ref_text:
                ref_res, ref_attr = ref_text.split(".", 1)
            else:
                ref_res, ref_attr = ref_text, "id"
            if ref_res not in resources:
                raise ValueError(f"Referenced resource '{ref_res}' not found.")
            resource_obj = resources[ref_res]
            attr_val = getattr(resource_obj, ref_attr, None)
            if attr_val is None:
                raise ValueError(f"Attribute '{ref_attr}' not found on resource '{ref_res}'")
            return attr_val
        else:
            return value
    else:
        return value


def get_lookup_params(required_params: set, resolved_args: dict) -> dict:
    lookup_params = {}
    for param in required_params:
        snake_key = to_snake_case(param)
        if snake_key in resolved_args:
            lookup_params[param] = resolved_args[snake_key]
        elif param in resolved_args:
            lookup_params[param] = resolved_args[param]
    return lookup_params


class GCPResourceBuilder:
    """
    Instantiates pulumi_gcp resources declared in config.yaml.

    Built resources land in the shared ``resources`` dict so later
    declarations can point at earlier ones (and at the core stack) with
    ``ref:<name>.<attr>``.
    """

    def __init__(self, project: str, region: str, labels: Dict[str, str], prefix: str,
                 resources: Dict[str, Any]):
        self.project = project
        self.region = region
        self.labels = labels
        self.prefix = prefix
        self.resources = resources

    def get_abbreviation(self, region: str) -> str:
        return GCP_REGION_ABBREVIATIONS.get(region.lower(), region.split("-")[0].lower())

    def generate_resource_name(self, base_name: str) -> str:
        prefix = self.prefix.strip().lower()
        reg_abbr = self.get_abbreviation(self.region)
        return f"{prefix}-{reg_abbr}-{base_name}".lower()

    def resolve_args(self, args: dict) -> dict:
        return {key: resolve_value(value, self.resources) for key, value in args.items()}

    def _apply_common_parameters(self, resolved_args: dict, init_sig: inspect.Signature) -> dict:
        if "labels" in init_sig.parameters:
            if self.labels:
                resolved_args.setdefault("labels", self.labels)
        else:
            resolved_args.pop("labels", None)
        if "project" in init_sig.parameters:
            resolved_args.setdefault("project", self.project)
        for location_key in ("region", "location"):
            if location_key in init_sig.parameters:
                resolved_args.setdefault(location_key, self.region)
            else:
                resolved_args.pop(location_key, None)
        return resolved_args

    def _lookup_existing(self, declaration: GCPResource, module: Any, class_name: str,
                         resolved_args: dict) -> bool:
        get_func_name = f"get_{to_snake_case(class_name)}"
        get_func = getattr(module, get_func_name, None)
        if get_func is None:
            pulumi.log.warn(f"Function '{get_func_name}' not found for '{declaration.type}'. "
                            f"Proceeding to create new resource '{declaration.name}'.")
            return False
        sig = inspect.signature(get_func)
        get_required = {k for k, param in sig.parameters.items()
                        if k not in {"opts"} and param.default == param.empty}
        get_params = get_lookup_params(get_required, resolved_args)
        missing = get_required - set(get_params.keys())
        if missing:
            pulumi.log.warn(f"Missing required params {missing} for existing resource "
                            f"'{declaration.name}'. Skipping the lookup attempt.")
            return False
        try:
            self.resources[declaration.name] = get_func(**get_params)
        except Exception as e:
            pulumi.log.warn(f"Failed to retrieve existing resource '{declaration.name}': {e}. "
                            f"Proceeding with creation.")
            return False
        pulumi.log.info(f"Fetched existing resource '{declaration.name}' via '{get_func_name}' with {get_params}")
        return True

    def build(self, declarations: List[GCPResource], opts: pulumi.ResourceOptions = None) -> None:
        for declaration in declarations:
            args = dict(declaration.args)
            is_existing = args.pop("existing", False)
            resolved_args = self.resolve_args(args)
            module_name, class_name = declaration.type.rsplit(".", 1)
            module = getattr(gcp, module_name, None)
            if not module:
                pulumi.log.warn(f"GCP module '{module_name}' not found. Skipping '{declaration.name}'.")
                continue
            try:
                ResourceClass = getattr(module, class_name)
            except AttributeError:
                pulumi.log.warn(f"Resource class '{class_name}' not found in module '{module_name}'. "
                                f"Skipping '{declaration.name}'.")
                continue
            if is_existing and self._lookup_existing(declaration, module, class_name, resolved_args):
                continue
            # generated classes take **kwargs in __init__; the real parameters live on _internal_init
            init_sig = inspect.signature(getattr(ResourceClass, "_internal_init", ResourceClass.__init__))
            resolved_args = self._apply_common_parameters(resolved_args, init_sig)
            pulumi_name = declaration.custom_name or self.generate_resource_name(declaration.name)
            pulumi.log.debug(f"Resolved args for '{declaration.name}': {', '.join(sorted(resolved_args))}")
            self.resources[declaration.name] = ResourceClass(pulumi_name, opts=opts, **resolved_args)
            pulumi.log.info(f"Created resource: {pulumi_name} ({declaration.type})")
