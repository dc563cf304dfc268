"""Tests for the backend-api stack declaration."""

import pytest

from config import BucketConfig, IngressConfig, InstanceConfig, PolicyStatementConfig, StackConfig
from declarations import (
    BucketPolicyStatement,
    ComputeInstance,
    IdentityRole,
    IngressRule,
    Network,
    ObjectStore,
    SecurityGroup,
)
from errors import DeclarationError, InvalidPortError, UnresolvedReferenceError
from stack import declare_stack


class TestDefaultStack:
    @pytest.fixture
    def declarations(self):
        return declare_stack("backend-api")

    def test_entity_counts(self, declarations):
        assert len(declarations.of_type(Network)) == 1
        assert len(declarations.of_type(SecurityGroup)) == 1
        assert len(declarations.of_type(IngressRule)) == 3
        assert len(declarations.of_type(IdentityRole)) == 1
        assert len(declarations.of_type(ComputeInstance)) == 1
        assert declarations.of_type(ObjectStore) == []

    def test_assembled(self, declarations):
        assert declarations.sealed

    def test_ingress_rules(self, declarations):
        rules = declarations.of_type(IngressRule)
        assert [r.port for r in rules] == [22, 80, 443]
        assert {r.cidr for r in rules} == {"0.0.0.0/0"}
        assert {r.protocol for r in rules} == {"tcp"}
        assert rules[0].description == "allow SSH access from anywhere"

    def test_network_has_no_nat(self, declarations):
        (vpc,) = declarations.of_type(Network)
        assert vpc.cidr == "10.0.0.0/16"
        assert vpc.nat_gateways == 0

    def test_role(self, declarations):
        (role,) = declarations.of_type(IdentityRole)
        assert role.assumed_by == "ec2.amazonaws.com"
        assert role.managed_policies == ("AmazonS3ReadOnlyAccess",)

    def test_instance_references_everything(self, declarations):
        (instance,) = declarations.of_type(ComputeInstance)
        assert instance.network is declarations.of_type(Network)[0]
        assert instance.security_group is declarations.of_type(SecurityGroup)[0]
        assert instance.role is declarations.of_type(IdentityRole)[0]
        assert instance.instance_type == "t2.micro"
        assert instance.key_name == "backend-api-ec2-key-pair"
        assert instance.machine_image.generation == "amazon-linux-2"

    def test_no_dangling_references(self, declarations):
        entities = set(declarations.entities)
        for entity in declarations.entities:
            for ref in entity.references():
                assert ref in entities

    def test_names_prefixed_and_unique(self, declarations):
        names = declarations.names()
        assert len(names) == len(set(names))
        assert all(name.startswith("backend-api-") for name in names)


class TestConfiguredStack:
    def test_bucket_layer(self):
        config = StackConfig(project_name="backend-api", bucket=BucketConfig())
        declarations = declare_stack("backend-api", config)

        (bucket,) = declarations.of_type(ObjectStore)
        assert bucket.force_destroy
        assert bucket.cors_rules[0].allowed_origins == ("http://localhost:6000",)
        assert bucket.lifecycle_rules[0].transitions[0].storage_class.value == "STANDARD_IA"
        (statement,) = declarations.of_type(BucketPolicyStatement)
        assert statement.bucket is bucket
        assert "s3:ListBucket" in statement.actions

    def test_statement_for_undeclared_bucket(self):
        bucket = BucketConfig(policy_statements=[
            PolicyStatementConfig(name="ec2-access", actions=["s3:GetObject"], bucket="ref:archive"),
        ])
        with pytest.raises(UnresolvedReferenceError, match="archive"):
            declare_stack("backend-api", StackConfig(project_name="backend-api", bucket=bucket))

    def test_bad_port_fails_before_submission(self):
        config = StackConfig(project_name="backend-api", ingress=[IngressConfig(port=70000)])
        with pytest.raises(InvalidPortError):
            declare_stack("backend-api", config)

    def test_abort_incomplete_uploads(self):
        config = StackConfig(project_name="backend-api", bucket=BucketConfig(abort_incomplete_upload_days=7))
        (bucket,) = declare_stack("backend-api", config).of_type(ObjectStore)
        assert bucket.lifecycle_rules[0].abort_incomplete_upload_days == 7

    def test_null_machine_image_is_a_declaration_error(self):
        config = StackConfig(project_name="backend-api", instance=InstanceConfig(machine_image=None))
        with pytest.raises(DeclarationError, match="Machine image"):
            declare_stack("backend-api", config)

    def test_other_prefix(self):
        declarations = declare_stack("billing", StackConfig(project_name="billing"))
        assert all(name.startswith("billing-") for name in declarations.names())
