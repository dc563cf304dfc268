import inspect
import json
import re
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import pulumi
import pulumi_aws as aws

from declarations import (
    BucketEncryption,
    BucketPolicyStatement,
    ComputeInstance,
    DeclarationSet,
    Entity,
    IdentityRole,
    IngressRule,
    LifecycleRule,
    Network,
    ObjectStore,
    RemovalPolicy,
    SecurityGroup,
    SubnetPlan,
    SubnetType,
)

SSE_ALGORITHMS = {
    BucketEncryption.S3_MANAGED: "AES256",
    BucketEncryption.KMS_MANAGED: "aws:kms",
}


def to_kebab_case(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


@lru_cache(maxsize=None)
def resolve_resource_type(resource_type: str) -> Tuple[Any, frozenset]:
    """Look up a pulumi_aws resource class like "ec2.Vpc" and the arguments it accepts."""
    module_name, class_name = resource_type.rsplit(".", 1)
    module = getattr(aws, module_name, None)
    if not module:
        raise ValueError(f"AWS module '{module_name}' not found.")
    try:
        resource_class = getattr(module, class_name)
    except AttributeError as e:
        raise ValueError(f"Resource class '{class_name}' not found in module '{module_name}'.") from e
    args_class = getattr(module, f"{class_name}Args", None)
    accepted = frozenset(inspect.signature(args_class.__init__).parameters) if args_class else frozenset()
    return resource_class, accepted


def removal_options(store: ObjectStore) -> Optional[pulumi.ResourceOptions]:
    if store.removal_policy == RemovalPolicy.RETAIN:
        return pulumi.ResourceOptions(retain_on_delete=True)
    return None


class AWSResourceBuilder:
    def __init__(self, declarations: DeclarationSet, region: Optional[str] = None,
                 tags: Optional[Dict[str, str]] = None):
        self.declarations = declarations
        self.region = region
        self.tags = dict(tags or {})
        self.resources: Dict[str, pulumi.Resource] = {}
        self._primary: Dict[Entity, pulumi.Resource] = {}
        self._subnets: Dict[Network, Dict[str, List[aws.ec2.Subnet]]] = {}
        self._profiles: Dict[IdentityRole, aws.iam.InstanceProfile] = {}

    def resource_tags(self, name: str) -> Dict[str, str]:
        return {"Name": name, "Project": self.declarations.prefix, **self.tags}

    def _apply_common_parameters(self, name: str, resolved_args: dict, accepted: frozenset) -> dict:
        if "tags" in accepted:
            resolved_args.setdefault("tags", self.resource_tags(name))
        else:
            resolved_args.pop("tags", None)
        if "region" in accepted and self.region:
            resolved_args.setdefault("region", self.region)
        else:
            resolved_args.pop("region", None)
        return resolved_args

    def create(self, resource_type: str, resource_name: str, opts: Optional[pulumi.ResourceOptions] = None,
               **args) -> pulumi.Resource:
        if resource_name in self.resources:
            raise ValueError(f"Resource '{resource_name}' was already created.")
        resource_class, accepted = resolve_resource_type(resource_type)
        resolved_args = {key: value for key, value in args.items() if value is not None}
        resolved_args = self._apply_common_parameters(resource_name, resolved_args, accepted)
        pulumi.log.debug(f"Arguments for '{resource_name}': {sorted(resolved_args)}")
        resource = resource_class(resource_name, opts=opts, **resolved_args)
        self.resources[resource_name] = resource
        pulumi.log.info(f"Created resource: {resource_name} ({resource_type})")
        return resource

    def build(self) -> Dict[str, pulumi.Resource]:
        handlers = {
            Network: self._build_network,
            SecurityGroup: self._build_security_group,
            IngressRule: self._build_ingress_rule,
            IdentityRole: self._build_role,
            ComputeInstance: self._build_instance,
            ObjectStore: self._build_bucket,
        }
        for entity in self.declarations.assemble():
            if isinstance(entity, BucketPolicyStatement):
                # Rendered into the owning bucket's policy document.
                continue
            handler = handlers.get(type(entity))
            if handler is None:
                raise ValueError(f"No builder for {type(entity).__name__} '{entity.name}'")
            self._primary[entity] = handler(entity)
        return self.resources

    def primary(self, entity: Entity) -> pulumi.Resource:
        return self._primary[entity]

    # --- Network ---

    def _build_network(self, network: Network) -> aws.ec2.Vpc:
        name = network.name
        vpc = self.create(
            "ec2.Vpc",
            name,
            cidr_block=network.cidr,
            enable_dns_hostnames=network.enable_dns_hostnames,
            enable_dns_support=network.enable_dns_support,
        )

        if network.availability_zones:
            zones = pulumi.Output.from_input(list(network.availability_zones))
        else:
            zones = aws.get_availability_zones_output(state="available").names

        subnets: Dict[str, List[aws.ec2.Subnet]] = {}
        placed: List[Tuple[SubnetPlan, aws.ec2.Subnet]] = []
        for plan in network.plan_subnets():
            subnet = self.create(
                "ec2.Subnet",
                f"{name}-{plan.logical_id}",
                vpc_id=vpc.id,
                cidr_block=plan.cidr,
                availability_zone=zones.apply(lambda names, i=plan.az_index: names[i]),
                map_public_ip_on_launch=plan.group.subnet_type == SubnetType.PUBLIC,
            )
            subnets.setdefault(plan.group.name, []).append(subnet)
            placed.append((plan, subnet))
        self._subnets[network] = subnets

        public = [(p, s) for p, s in placed if p.group.subnet_type == SubnetType.PUBLIC]
        if public:
            igw = self.create("ec2.InternetGateway", f"{name}-igw", vpc_id=vpc.id)
            public_rt = self.create(
                "ec2.RouteTable",
                f"{name}-public-rt",
                vpc_id=vpc.id,
                routes=[aws.ec2.RouteTableRouteArgs(cidr_block="0.0.0.0/0", gateway_id=igw.id)],
            )
            for plan, subnet in public:
                self._associate(f"{name}-{plan.logical_id}", subnet, public_rt)

        nat_gateways = []
        for i in range(network.nat_gateways):
            eip = self.create("ec2.Eip", f"{name}-nat-eip-{i + 1}", domain="vpc")
            nat_gateways.append(self.create(
                "ec2.NatGateway",
                f"{name}-nat-gateway-{i + 1}",
                allocation_id=eip.id,
                subnet_id=public[i][1].id,
            ))

        isolated_rt = None
        for plan, subnet in placed:
            subnet_type = plan.group.subnet_type
            if subnet_type == SubnetType.PRIVATE:
                nat = nat_gateways[plan.az_index % len(nat_gateways)]
                private_rt = self.create(
                    "ec2.RouteTable",
                    f"{name}-{plan.logical_id}-rt",
                    vpc_id=vpc.id,
                    routes=[aws.ec2.RouteTableRouteArgs(cidr_block="0.0.0.0/0", nat_gateway_id=nat.id)],
                )
                self._associate(f"{name}-{plan.logical_id}", subnet, private_rt)
            elif subnet_type == SubnetType.ISOLATED:
                if isolated_rt is None:
                    isolated_rt = self.create("ec2.RouteTable", f"{name}-isolated-rt", vpc_id=vpc.id, routes=[])
                self._associate(f"{name}-{plan.logical_id}", subnet, isolated_rt)
        return vpc

    def _associate(self, name: str, subnet: aws.ec2.Subnet, route_table: aws.ec2.RouteTable) -> None:
        self.create(
            "ec2.RouteTableAssociation",
            f"{name}-rt-assoc",
            subnet_id=subnet.id,
            route_table_id=route_table.id,
        )

    def subnet_for(self, network: Network, plan: SubnetPlan) -> aws.ec2.Subnet:
        return self._subnets[network][plan.group.name][plan.az_index]

    # --- Security ---

    def _build_security_group(self, group: SecurityGroup) -> aws.ec2.SecurityGroup:
        security_group = self.create(
            "ec2.SecurityGroup",
            group.name,
            name=group.name,
            description=group.description or f"Security group {group.name}",
            vpc_id=self.primary(group.network).id,
        )
        if group.allow_all_outbound:
            self.create(
                "vpc.SecurityGroupEgressRule",
                f"{group.name}-egress-all",
                security_group_id=security_group.id,
                ip_protocol="-1",
                cidr_ipv4="0.0.0.0/0",
                description="allow all outbound traffic",
            )
        return security_group

    def _build_ingress_rule(self, rule: IngressRule) -> aws.vpc.SecurityGroupIngressRule:
        source = {"cidr_ipv4": rule.cidr} if rule.ip_version == 4 else {"cidr_ipv6": rule.cidr}
        return self.create(
            "vpc.SecurityGroupIngressRule",
            rule.name,
            security_group_id=self.primary(rule.security_group).id,
            ip_protocol=rule.protocol,
            from_port=rule.port,
            to_port=rule.port,
            description=rule.description or None,
            **source,
        )

    # --- Identity ---

    def _build_role(self, role: IdentityRole) -> aws.iam.Role:
        iam_role = self.create(
            "iam.Role",
            role.name,
            name=role.name,
            assume_role_policy=json.dumps(role.assume_role_policy()),
            description=role.description or None,
        )
        for policy, arn in zip(role.managed_policies, role.managed_policy_arns):
            self.create(
                "iam.RolePolicyAttachment",
                f"{role.name}-{to_kebab_case(policy)}",
                role=iam_role.name,
                policy_arn=arn,
            )
        self._profiles[role] = self.create(
            "iam.InstanceProfile",
            f"{role.name}-profile",
            name=f"{role.name}-profile",
            role=iam_role.name,
        )
        return iam_role

    # --- Compute ---

    def _build_instance(self, instance: ComputeInstance) -> aws.ec2.Instance:
        image = instance.machine_image
        if image.ami_id:
            ami = image.ami_id
        else:
            ami = aws.ec2.get_ami_output(
                most_recent=True,
                owners=["amazon"],
                filters=[
                    aws.ec2.GetAmiFilterArgs(name="name", values=[image.name_filter]),
                    aws.ec2.GetAmiFilterArgs(name="virtualization-type", values=["hvm"]),
                ],
            ).id

        profile = self._profiles[instance.role].name if instance.role is not None else None
        subnet = self.subnet_for(instance.network, instance.placement)
        return self.create(
            "ec2.Instance",
            instance.name,
            ami=ami,
            instance_type=instance.instance_type,
            subnet_id=subnet.id,
            vpc_security_group_ids=[self.primary(instance.security_group).id],
            iam_instance_profile=profile,
            key_name=instance.key_name,
        )

    # --- Storage ---

    def _build_bucket(self, store: ObjectStore) -> aws.s3.Bucket:
        name = store.name
        bucket = self.create(
            "s3.Bucket",
            name,
            opts=removal_options(store),
            bucket=store.bucket,
            force_destroy=store.force_destroy,
        )

        if store.versioned:
            self.create(
                "s3.BucketVersioning",
                f"{name}-versioning",
                bucket=bucket.id,
                versioning_configuration=aws.s3.BucketVersioningVersioningConfigurationArgs(status="Enabled"),
            )

        if store.encryption != BucketEncryption.UNENCRYPTED:
            self.create(
                "s3.BucketServerSideEncryptionConfiguration",
                f"{name}-encryption",
                bucket=bucket.id,
                rules=[aws.s3.BucketServerSideEncryptionConfigurationRuleArgs(
                    apply_server_side_encryption_by_default=aws.s3.BucketServerSideEncryptionConfigurationRuleApplyServerSideEncryptionByDefaultArgs(
                        sse_algorithm=SSE_ALGORITHMS[store.encryption],
                    ),
                )],
            )

        blocked = not store.public_read_access
        public_access = self.create(
            "s3.BucketPublicAccessBlock",
            f"{name}-public-access",
            bucket=bucket.id,
            block_public_acls=blocked,
            block_public_policy=blocked,
            ignore_public_acls=blocked,
            restrict_public_buckets=blocked,
        )

        if store.cors_rules:
            self.create(
                "s3.BucketCorsConfiguration",
                f"{name}-cors",
                bucket=bucket.id,
                cors_rules=[
                    aws.s3.BucketCorsConfigurationCorsRuleArgs(
                        allowed_methods=list(rule.allowed_methods),
                        allowed_origins=list(rule.allowed_origins),
                        allowed_headers=list(rule.allowed_headers),
                        expose_headers=list(rule.exposed_headers) or None,
                        max_age_seconds=rule.max_age_seconds,
                    )
                    for rule in store.cors_rules
                ],
            )

        if store.lifecycle_rules:
            self.create(
                "s3.BucketLifecycleConfiguration",
                f"{name}-lifecycle",
                bucket=bucket.id,
                rules=[self._lifecycle_rule(rule) for rule in store.lifecycle_rules],
            )

        statements = store.policy_statements
        if statements or store.public_read_access:
            policy = bucket.arn.apply(lambda arn: json.dumps(self.bucket_policy(store, statements, arn)))
            self.create(
                "s3.BucketPolicy",
                f"{name}-policy",
                opts=pulumi.ResourceOptions(depends_on=[public_access]),
                bucket=bucket.id,
                policy=policy,
            )
        return bucket

    @staticmethod
    def bucket_policy(store: ObjectStore, statements: List[BucketPolicyStatement], arn: str) -> Dict[str, Any]:
        documents = [statement.document(arn) for statement in statements]
        if store.public_read_access:
            documents.append({
                "Sid": "PublicRead",
                "Effect": "Allow",
                "Principal": "*",
                "Action": ["s3:GetObject"],
                "Resource": [f"{arn}/*"],
            })
        return {"Version": "2012-10-17", "Statement": documents}

    @staticmethod
    def _lifecycle_rule(rule: LifecycleRule) -> aws.s3.BucketLifecycleConfigurationRuleArgs:
        expiration = None
        if rule.expiration_days:
            expiration = aws.s3.BucketLifecycleConfigurationRuleExpirationArgs(days=rule.expiration_days)
        abort = None
        if rule.abort_incomplete_upload_days:
            abort = aws.s3.BucketLifecycleConfigurationRuleAbortIncompleteMultipartUploadArgs(
                days_after_initiation=rule.abort_incomplete_upload_days,
            )
        return aws.s3.BucketLifecycleConfigurationRuleArgs(
            id=rule.rule_id,
            status="Enabled" if rule.enabled else "Disabled",
            filter=aws.s3.BucketLifecycleConfigurationRuleFilterArgs(prefix=rule.prefix),
            transitions=[
                aws.s3.BucketLifecycleConfigurationRuleTransitionArgs(
                    days=t.days,
                    storage_class=t.storage_class.value,
                )
                for t in rule.transitions
            ] or None,
            expiration=expiration,
            abort_incomplete_multipart_upload=abort,
        )
