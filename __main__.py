import pulumi
from awsstack import AWSResourceBuilder
from config import load_config
from stack import declare_stack

def main():
    # Load YAML configuration
    config = load_config("config.yaml")

    try:
        declarations = declare_stack(config.project_name, config)
    except ValueError as e:
        pulumi.log.error(f"Invalid stack declaration: {e}")
        raise

    builder = AWSResourceBuilder(
        declarations,
        region=config.region,
        tags={"Environment": config.environment, **config.tags},
    )
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

if __name__ == "__main__":
    main()
