import pulumi
from config import load_config
from studio import CreativeStudioBuilder


def main():
    # Load YAML configuration
    try:
        config = load_config("config.yaml")
    except Exception as e:
        pulumi.log.error(f"Invalid configuration in config.yaml: {e}")
        raise

    builder = CreativeStudioBuilder(config)
    try:
        builder.build()
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    # Export created resources
    for name, resource in builder.resources.items():
        try:
            pulumi.export(name, resource.id)
        except Exception as e:
            pulumi.log.warn(f"Failed to export resource '{name}': {e}")

    pulumi.export("deployed_domain", builder.deployed_domain)
    pulumi.export("cors_origins", builder.cors_origins)
    pulumi.export("service_urls", builder.resources["service"].urls)
    pulumi.export("bucket_name", builder.resources["bucket"].name)
    pulumi.export(
        "registry_url",
        pulumi.Output.concat(
            config.region, "-docker.pkg.dev/", config.project_id, "/",
            builder.resources["repository"].repository_id,
        ),
    )
    if builder.load_balancer is not None:
        pulumi.export("load_balancer_ip", builder.load_balancer.get_outputs().ip_address)


if __name__ == "__main__":
    main()
