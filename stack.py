"""
The backend-api stack: VPC, security group, instance role and EC2 instance,
plus an optional S3 bucket layer.
"""

from typing import Optional

import pulumi

from config import BucketConfig, StackConfig
from declarations import (
    BucketPolicyStatement,
    ComputeInstance,
    CorsRule,
    DeclarationSet,
    IdentityRole,
    LifecycleRule,
    MachineImage,
    Network,
    ObjectStore,
    SecurityGroup,
    SubnetGroup,
    Transition,
)


def declare_stack(project_name: str, config: Optional[StackConfig] = None) -> DeclarationSet:
    """Declare and assemble every resource of one deployment.

    Returns the sealed DeclarationSet; any invalid property or dangling
    reference raises a DeclarationError before anything reaches the engine.
    """
    config = config or StackConfig(project_name=project_name)
    scope = DeclarationSet(project_name)

    # No NAT gateways unless the config asks for them.
    vpc = Network(
        scope,
        "vpc",
        cidr=config.network.cidr,
        nat_gateways=config.network.nat_gateways,
        max_azs=config.network.max_azs,
        availability_zones=tuple(config.network.availability_zones),
        subnet_groups=tuple(
            SubnetGroup(s.name, subnet_type=s.subnet_type, cidr_mask=s.cidr_mask)
            for s in config.network.subnets
        ),
    )

    security_group = SecurityGroup(
        scope,
        "security-group",
        network=vpc,
        description=f"{scope.prefix} instance access",
        allow_all_outbound=True,
    )
    for rule in config.ingress:
        security_group.add_ingress_rule(rule.cidr, rule.port, rule.description, protocol=rule.protocol)

    role = IdentityRole(
        scope,
        "role",
        assumed_by=config.role.assumed_by,
        managed_policies=tuple(config.role.managed_policies),
    )

    ComputeInstance(
        scope,
        "ec2-instance",
        network=vpc,
        security_group=security_group,
        role=role,
        instance_class=config.instance.instance_class,
        instance_size=config.instance.instance_size,
        machine_image=MachineImage.parse(config.instance.machine_image),
        key_name=config.instance.key_name or scope.derive_name("ec2-key-pair"),
        subnet_type=config.instance.subnet_type,
        subnet_group=config.instance.subnet_group,
    )

    if config.bucket is not None:
        declare_bucket(scope, config.bucket)

    scope.assemble()
    return scope


def declare_bucket(scope: DeclarationSet, bucket_config: BucketConfig) -> ObjectStore:
    lifecycle_rules = ()
    if bucket_config.transitions or bucket_config.expiration_days or bucket_config.abort_incomplete_upload_days:
        lifecycle_rules = (LifecycleRule(
            rule_id="transitions",
            transitions=tuple(Transition(t.storage_class, t.days) for t in bucket_config.transitions),
            expiration_days=bucket_config.expiration_days,
            abort_incomplete_upload_days=bucket_config.abort_incomplete_upload_days,
        ),)

    bucket = ObjectStore(
        scope,
        "bucket",
        bucket_name=bucket_config.bucket_name,
        encryption=bucket_config.encryption,
        versioned=bucket_config.versioned,
        public_read_access=bucket_config.public_read_access,
        removal_policy=bucket_config.removal_policy,
        auto_delete_objects=bucket_config.auto_delete_objects,
        cors_rules=tuple(
            CorsRule(
                allowed_methods=tuple(c.allowed_methods),
                allowed_origins=tuple(c.allowed_origins),
                allowed_headers=tuple(c.allowed_headers),
            )
            for c in bucket_config.cors
        ),
        lifecycle_rules=lifecycle_rules,
    )

    for statement in bucket_config.policy_statements:
        BucketPolicyStatement(
            scope,
            statement.name,
            bucket=statement.bucket,
            actions=tuple(statement.actions),
            principals=tuple(statement.principals),
            effect=statement.effect,
            resources=tuple(statement.resources),
        )
    if bucket.force_destroy and bucket.versioned:
        pulumi.log.warn(f"Bucket '{bucket.bucket}' is versioned; destroying it deletes every object version")
    return bucket
