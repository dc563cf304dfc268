"""
This module defines the data structures for our configuration and loads
them from the YAML file that sits next to the Pulumi program.
Anything left out of the file falls back to the defaults below.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Union, get_args, get_origin

import yaml

from errors import ConfigError

REQUIRED_KEYS = ["project_name"]


@dataclass
class SubnetConfig:
    name: str = "public"
    subnet_type: str = "public"
    cidr_mask: int = 24


@dataclass
class NetworkConfig:
    cidr: str = "10.0.0.0/16"
    nat_gateways: int = 0
    max_azs: int = 2
    availability_zones: List[str] = field(default_factory=list)
    subnets: List[SubnetConfig] = field(default_factory=lambda: [SubnetConfig()])


@dataclass
class InstanceConfig:
    instance_class: str = "t2"
    instance_size: str = "micro"
    machine_image: str = "amazon-linux-2"
    key_name: Optional[str] = None
    subnet_type: str = "public"
    subnet_group: Optional[str] = None


@dataclass
class IngressConfig:
    port: int
    description: str = ""
    cidr: str = "0.0.0.0/0"
    protocol: str = "tcp"


def _default_ingress() -> List[IngressConfig]:
    return [
        IngressConfig(22, "allow SSH access from anywhere"),
        IngressConfig(80, "allow HTTP traffic from anywhere"),
        IngressConfig(443, "allow HTTPS traffic from anywhere"),
    ]


@dataclass
class RoleConfig:
    assumed_by: str = "ec2.amazonaws.com"
    managed_policies: List[str] = field(default_factory=lambda: ["AmazonS3ReadOnlyAccess"])


@dataclass
class CorsConfig:
    allowed_origins: List[str] = field(default_factory=lambda: ["http://localhost:6000"])
    allowed_methods: List[str] = field(default_factory=lambda: ["GET", "POST", "PUT"])
    allowed_headers: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class TransitionConfig:
    storage_class: str = "STANDARD_IA"
    days: int = 30


@dataclass
class PolicyStatementConfig:
    name: str
    actions: List[str]
    bucket: str = "ref:bucket"
    principals: List[str] = field(default_factory=lambda: ["ec2.amazonaws.com"])
    effect: str = "Allow"
    resources: List[str] = field(default_factory=lambda: ["", "/*"])


def _default_statements() -> List[PolicyStatementConfig]:
    return [
        PolicyStatementConfig(
            name="ec2-access",
            actions=["s3:GetObject", "s3:PutObject", "s3:DeleteObject", "s3:ListBucket"],
        )
    ]


@dataclass
class BucketConfig:
    bucket_name: Optional[str] = None
    encryption: str = "s3-managed"
    versioned: bool = False
    public_read_access: bool = False
    removal_policy: str = "destroy"
    auto_delete_objects: bool = True
    cors: List[CorsConfig] = field(default_factory=lambda: [CorsConfig()])
    transitions: List[TransitionConfig] = field(default_factory=lambda: [TransitionConfig()])
    expiration_days: Optional[int] = None
    abort_incomplete_upload_days: Optional[int] = None
    policy_statements: List[PolicyStatementConfig] = field(default_factory=_default_statements)


@dataclass
class StackConfig:
    project_name: str
    environment: str = "dev"
    region: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    instance: InstanceConfig = field(default_factory=InstanceConfig)
    ingress: List[IngressConfig] = field(default_factory=_default_ingress)
    role: RoleConfig = field(default_factory=RoleConfig)
    bucket: Optional[BucketConfig] = None


def _check_type(value: Any, expected: Any, where: str) -> None:
    """Reject YAML values whose shape does not match the field annotation."""
    args = get_args(expected)
    if get_origin(expected) is Union and type(None) in args:
        if value is None:
            return
        expected = next(a for a in args if a is not type(None))
    if value is None:
        raise ConfigError(f"'{where}' must not be empty")
    origin = get_origin(expected) or expected
    if origin is int and isinstance(value, bool):
        raise ConfigError(f"'{where}' must be an integer, got {value!r}")
    if origin in (str, int, bool, list, dict) and not isinstance(value, origin):
        raise ConfigError(f"'{where}' must be of type {origin.__name__}, got {type(value).__name__}")


def _build(cls, data: Any, where: str):
    if not isinstance(data, dict):
        raise ConfigError(f"'{where}' must be a mapping, got {type(data).__name__}")
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys in '{where}': {sorted(unknown)}")
    for key, value in data.items():
        _check_type(value, known[key].type, f"{where}.{key}")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigError(f"Invalid '{where}' configuration: {e}") from e


def _build_list(cls, items: Any, where: str) -> list:
    if not isinstance(items, list):
        raise ConfigError(f"'{where}' must be a list")
    return [_build(cls, item, f"{where}[{i}]") for i, item in enumerate(items)]


def parse_config(config_data: Dict[str, Any]) -> StackConfig:
    """Map a raw configuration mapping onto StackConfig."""
    if not isinstance(config_data, dict):
        raise ConfigError("Configuration must be a mapping")
    for key in REQUIRED_KEYS:
        if key not in config_data:
            raise ConfigError(f"Missing required configuration key: {key}")

    data = dict(config_data)
    network = data.pop("network", None)
    instance = data.pop("instance", None)
    ingress = data.pop("ingress", None)
    role = data.pop("role", None)
    bucket = data.pop("bucket", None)
    config = _build(StackConfig, data, "stack")

    if network is not None:
        network = dict(network) if isinstance(network, dict) else network
        subnets = network.pop("subnets", None) if isinstance(network, dict) else None
        config.network = _build(NetworkConfig, network, "network")
        if subnets is not None:
            config.network.subnets = _build_list(SubnetConfig, subnets, "network.subnets")
    if instance is not None:
        config.instance = _build(InstanceConfig, instance, "instance")
    if ingress is not None:
        config.ingress = _build_list(IngressConfig, ingress, "ingress")
    if role is not None:
        config.role = _build(RoleConfig, role, "role")
    if bucket is not None:
        config.bucket = _build_bucket(bucket or {})
    return config


def _build_bucket(data: Any) -> BucketConfig:
    if not isinstance(data, dict):
        raise ConfigError("'bucket' must be a mapping")
    data = dict(data)
    nested = {
        "cors": (CorsConfig, data.pop("cors", None)),
        "transitions": (TransitionConfig, data.pop("transitions", None)),
        "policy_statements": (PolicyStatementConfig, data.pop("policy_statements", None)),
    }
    bucket = _build(BucketConfig, data, "bucket")
    for key, (cls, items) in nested.items():
        if items is not None:
            setattr(bucket, key, _build_list(cls, items, f"bucket.{key}"))
    return bucket


def load_config(file_path: str) -> StackConfig:
    """Load and validate YAML configuration from the given file path."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file)
    return parse_config(config_data or {})
