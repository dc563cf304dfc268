"""
Materialization tests run against Pulumi's mock runtime.

The mocks record every registered resource so the tests can check the shape
of the graph handed to the engine.
"""

import json

import pulumi

ZONES = ["us-east-1a", "us-east-1b", "us-east-1c"]
AMI_ID = "ami-0123456789abcdef0"


class RecordingMocks(pulumi.runtime.Mocks):
    def __init__(self):
        self.created = []

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        outputs = dict(args.inputs)
        if args.typ.endswith(":Bucket"):
            outputs["arn"] = f"arn:aws:s3:::{args.inputs.get('bucket', args.name)}"
        self.created.append(args)
        return [f"{args.name}_id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        if args.token == "aws:index/getAvailabilityZones:getAvailabilityZones":
            return {"id": "us-east-1", "names": ZONES, "zoneIds": ["use1-az1", "use1-az2", "use1-az4"]}
        if args.token == "aws:ec2/getAmi:getAmi":
            return {"id": AMI_ID, "imageId": AMI_ID, "name": "amzn2-ami-hvm-2.0.20240101.0-x86_64-gp2"}
        return {}

    def of_type(self, class_name: str) -> list:
        return [r for r in self.created if r.typ.split(":")[-1] == class_name]


mocks = RecordingMocks()
pulumi.runtime.set_mocks(mocks, preview=False)

import pulumi_aws as aws  # noqa: E402
from awsstack import AWSResourceBuilder, removal_options, resolve_resource_type  # noqa: E402
from config import BucketConfig, NetworkConfig, StackConfig, SubnetConfig  # noqa: E402
from declarations import ComputeInstance, DeclarationSet, ObjectStore, SecurityGroup  # noqa: E402
from stack import declare_stack  # noqa: E402


def build(config=None, **kwargs):
    mocks.created.clear()
    builder = AWSResourceBuilder(declare_stack("backend-api", config), **kwargs)
    builder.build()
    return builder


def registered(builder):
    return pulumi.Output.all(*[r.urn for r in builder.resources.values()])


def test_resolve_resource_type():
    resource_class, accepted = resolve_resource_type("ec2.Vpc")
    assert resource_class is aws.ec2.Vpc
    assert "cidr_block" in accepted
    assert "tags" in accepted


@pulumi.runtime.test
def test_default_stack_graph():
    builder = build()

    def check(_):
        assert len(mocks.of_type("Vpc")) == 1
        assert len(mocks.of_type("SecurityGroup")) == 1
        assert len(mocks.of_type("SecurityGroupIngressRule")) == 3
        assert len(mocks.of_type("Role")) == 1
        assert len(mocks.of_type("RolePolicyAttachment")) == 1
        assert len(mocks.of_type("InstanceProfile")) == 1
        assert len(mocks.of_type("Instance")) == 1
        assert len(mocks.of_type("Subnet")) == 2
        assert len(mocks.of_type("InternetGateway")) == 1
        assert mocks.of_type("NatGateway") == []
        assert mocks.of_type("Eip") == []
        assert mocks.of_type("Bucket") == []
        ports = sorted(r.inputs["fromPort"] for r in mocks.of_type("SecurityGroupIngressRule"))
        assert ports == [22, 80, 443]
        assert {r.inputs["cidrIpv4"] for r in mocks.of_type("SecurityGroupIngressRule")} == {"0.0.0.0/0"}
        (attachment,) = mocks.of_type("RolePolicyAttachment")
        assert attachment.inputs["policyArn"] == "arn:aws:iam::aws:policy/AmazonS3ReadOnlyAccess"

    return registered(builder).apply(check)


@pulumi.runtime.test
def test_resource_names_prefixed():
    builder = build()

    def check(_):
        names = [r.name for r in mocks.created]
        assert len(names) == len(set(names))
        assert all(name.startswith("backend-api-") for name in names)

    return registered(builder).apply(check)


@pulumi.runtime.test
def test_instance_wiring():
    builder = build()
    declarations = builder.declarations
    (instance_decl,) = declarations.of_type(ComputeInstance)
    (group_decl,) = declarations.of_type(SecurityGroup)
    instance = builder.primary(instance_decl)
    security_group = builder.primary(group_decl)
    subnet = builder.resources["backend-api-vpc-public-subnet-1"]
    profile = builder.resources["backend-api-role-profile"]

    def check(args):
        group_ids, group_id, subnet_id, public_subnet_id, profile_name, expected_profile, ami, key, size, tags = args
        assert group_ids == [group_id]
        assert subnet_id == public_subnet_id
        assert profile_name == expected_profile == "backend-api-role-profile"
        assert ami == AMI_ID
        assert key == "backend-api-ec2-key-pair"
        assert size == "t2.micro"
        assert tags["Name"] == "backend-api-ec2-instance"
        assert tags["Project"] == "backend-api"

    return pulumi.Output.all(
        instance.vpc_security_group_ids,
        security_group.id,
        instance.subnet_id,
        subnet.id,
        instance.iam_instance_profile,
        profile.name,
        instance.ami,
        instance.key_name,
        instance.instance_type,
        instance.tags,
    ).apply(check)


@pulumi.runtime.test
def test_subnets_use_availability_zones():
    builder = build()
    first = builder.resources["backend-api-vpc-public-subnet-1"]
    second = builder.resources["backend-api-vpc-public-subnet-2"]

    def check(args):
        assert args == ["us-east-1a", "10.0.0.0/24", True, "us-east-1b", "10.0.1.0/24"]

    return pulumi.Output.all(
        first.availability_zone, first.cidr_block, first.map_public_ip_on_launch,
        second.availability_zone, second.cidr_block,
    ).apply(check)


@pulumi.runtime.test
def test_nat_gateways_for_private_subnets():
    config = StackConfig(
        project_name="backend-api",
        network=NetworkConfig(
            nat_gateways=1,
            availability_zones=["eu-west-1a", "eu-west-1b"],
            subnets=[SubnetConfig("public", "public", 24), SubnetConfig("app", "private", 24)],
        ),
    )
    builder = build(config)

    def check(_):
        assert len(mocks.of_type("NatGateway")) == 1
        assert len(mocks.of_type("Eip")) == 1
        routes = [r for r in mocks.of_type("RouteTable") if r.name.startswith("backend-api-vpc-app-subnet")]
        assert len(routes) == 2
        assert all(route.inputs["routes"][0]["natGatewayId"] for route in routes)
        assert len(mocks.of_type("RouteTableAssociation")) == 4

    return registered(builder).apply(check)


@pulumi.runtime.test
def test_common_tags_and_region():
    builder = build(region="eu-west-1", tags={"Environment": "prod"})
    vpc = builder.resources["backend-api-vpc"]

    def check(args):
        tags, region = args
        assert tags == {"Name": "backend-api-vpc", "Project": "backend-api", "Environment": "prod"}
        assert region == "eu-west-1"

    return pulumi.Output.all(vpc.tags, vpc.region).apply(check)


@pulumi.runtime.test
def test_bucket_layer():
    config = StackConfig(project_name="backend-api", bucket=BucketConfig(versioned=True))
    builder = build(config)
    bucket = builder.resources["backend-api-bucket"]
    policy = builder.resources["backend-api-bucket-policy"]

    def check(args):
        bucket_name, force_destroy, document = args
        assert bucket_name == "backend-api-bucket"
        # Destroy with auto-delete must purge every object version too.
        assert force_destroy is True
        assert len(mocks.of_type("BucketVersioning")) == 1
        assert len(mocks.of_type("BucketCorsConfiguration")) == 1
        assert len(mocks.of_type("BucketLifecycleConfiguration")) == 1
        assert len(mocks.of_type("BucketServerSideEncryptionConfiguration")) == 1
        (public_access,) = mocks.of_type("BucketPublicAccessBlock")
        assert public_access.inputs["blockPublicPolicy"] is True
        (statement,) = json.loads(document)["Statement"]
        assert statement["Resource"] == ["arn:aws:s3:::backend-api-bucket", "arn:aws:s3:::backend-api-bucket/*"]
        assert statement["Action"] == ["s3:GetObject", "s3:PutObject", "s3:DeleteObject", "s3:ListBucket"]

    return pulumi.Output.all(bucket.bucket, bucket.force_destroy, policy.policy).apply(check)


@pulumi.runtime.test
def test_retained_bucket_is_not_force_destroyed():
    bucket_config = BucketConfig(removal_policy="retain", auto_delete_objects=False, policy_statements=[])
    builder = build(StackConfig(project_name="backend-api", bucket=bucket_config))
    bucket = builder.resources["backend-api-bucket"]

    def check(force_destroy):
        assert not force_destroy
        assert mocks.of_type("BucketPolicy") == []

    return bucket.force_destroy.apply(check)


def test_removal_options():
    scope = DeclarationSet("backend-api")
    retained = ObjectStore(scope, "retained", removal_policy="retain")
    destroyed = ObjectStore(scope, "destroyed", removal_policy="destroy", auto_delete_objects=True)

    assert removal_options(retained).retain_on_delete is True
    assert removal_options(destroyed) is None


@pulumi.runtime.test
def test_physical_names_passed_through():
    builder = build()

    def check(_):
        (group,) = mocks.of_type("SecurityGroup")
        (role,) = mocks.of_type("Role")
        (profile,) = mocks.of_type("InstanceProfile")
        assert group.inputs["name"] == "backend-api-security-group"
        assert role.inputs["name"] == "backend-api-role"
        assert profile.inputs["name"] == "backend-api-role-profile"

    return registered(builder).apply(check)
