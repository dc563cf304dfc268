"""
Desired-state declarations for one deployable stack.

Every entity is an immutable value object constructed against an explicit
DeclarationSet. Construction validates the entity's own properties and
resolves its references, so an invalid declaration fails at the line that
declares it rather than inside the Pulumi engine.
"""

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

import pulumi

from errors import (
    DeclarationError,
    DuplicateNameError,
    InvalidCidrError,
    InvalidPortError,
    UnresolvedReferenceError,
)

REF_PREFIX = "ref:"
MIN_PORT = 0
MAX_PORT = 65535
MIN_VPC_PREFIX = 16
MAX_VPC_PREFIX = 28
MIN_IA_TRANSITION_DAYS = 30
MANAGED_POLICY_ARN_PREFIX = "arn:aws:iam::aws:policy/"

_LABEL = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
_SERVICE_PRINCIPAL = re.compile(r"^[a-z0-9.-]+\.amazonaws\.com(\.cn)?$")
_MANAGED_POLICY = re.compile(r"^[\w+=,.@/-]+$")
_BUCKET_NAME = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
_S3_ACTION = re.compile(r"^s3:[A-Za-z*]+$")
_INSTANCE_CLASS = re.compile(r"^[a-z][a-z0-9-]*$")
_INSTANCE_SIZE = re.compile(r"^[a-z0-9]+$")

E = TypeVar("E", bound="Entity")


class SubnetType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    ISOLATED = "isolated"


class RemovalPolicy(str, Enum):
    RETAIN = "retain"
    DESTROY = "destroy"


class BucketEncryption(str, Enum):
    S3_MANAGED = "s3-managed"
    KMS_MANAGED = "kms-managed"
    UNENCRYPTED = "unencrypted"


class StorageClass(str, Enum):
    STANDARD_IA = "STANDARD_IA"
    ONEZONE_IA = "ONEZONE_IA"
    INTELLIGENT_TIERING = "INTELLIGENT_TIERING"
    GLACIER_IR = "GLACIER_IR"
    GLACIER = "GLACIER"
    DEEP_ARCHIVE = "DEEP_ARCHIVE"


def parse_cidr(value: str) -> Union[ipaddress.IPv4Network, ipaddress.IPv6Network]:
    try:
        return ipaddress.ip_network(value, strict=True)
    except (TypeError, ValueError) as e:
        raise InvalidCidrError(f"'{value}' is not a valid CIDR range: {e}") from e


def _coerce(enum_type: Type[Enum], value: Any, what: str) -> Any:
    try:
        return enum_type(value)
    except ValueError as e:
        allowed = ", ".join(member.value for member in enum_type)
        raise DeclarationError(f"Unsupported {what} '{value}' (expected one of: {allowed})") from e


def _freeze(obj: Any, name: str, value: Any) -> None:
    object.__setattr__(obj, name, value)


class DeclarationSet:
    """A named group of declarations that is submitted to the engine as one stack.

    Entities register themselves on construction. ``assemble()`` checks the
    whole graph once more and seals the set; nothing can be added afterwards.
    """

    def __init__(self, prefix: str):
        prefix = (prefix or "").strip().lower()
        if not _LABEL.match(prefix):
            raise DeclarationError(f"Invalid namespace prefix '{prefix}'")
        self.prefix = prefix
        self._entities: Dict[str, "Entity"] = {}
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def entities(self) -> Tuple["Entity", ...]:
        return tuple(self._entities.values())

    def derive_name(self, logical_id: str) -> str:
        return f"{self.prefix}-{logical_id}"

    def names(self) -> List[str]:
        return list(self._entities)

    def register(self, entity: "Entity") -> None:
        if self._sealed:
            raise DeclarationError(f"Declaration set '{self.prefix}' is already assembled")
        if entity.name in self._entities:
            raise DuplicateNameError(f"Resource name '{entity.name}' is already declared")
        self._entities[entity.name] = entity
        pulumi.log.debug(f"Declared {type(entity).__name__} '{entity.name}'")

    def resolve(self, value: Any, expected: Optional[Type[E]] = None) -> E:
        if isinstance(value, str):
            if not value.startswith(REF_PREFIX):
                raise UnresolvedReferenceError(f"Expected a '{REF_PREFIX}' reference, got '{value}'")
            ref_id = value[len(REF_PREFIX):]
            entity = self._entities.get(self.derive_name(ref_id))
            if entity is None:
                raise UnresolvedReferenceError(f"Referenced resource '{ref_id}' not found.")
        elif isinstance(value, Entity):
            entity = value
            if self._entities.get(entity.name) is not entity:
                raise UnresolvedReferenceError(
                    f"Referenced resource '{entity.logical_id}' not found in '{self.prefix}'."
                )
        else:
            raise UnresolvedReferenceError(f"Cannot resolve reference {value!r}")
        if expected is not None and not isinstance(entity, expected):
            raise UnresolvedReferenceError(
                f"Referenced resource '{entity.logical_id}' is a {type(entity).__name__}, "
                f"expected {expected.__name__}"
            )
        return entity

    def of_type(self, entity_type: Type[E]) -> List[E]:
        return [e for e in self._entities.values() if isinstance(e, entity_type)]

    def children_of(self, parent: "Entity", entity_type: Type[E]) -> List[E]:
        return [e for e in self.of_type(entity_type) if e.parent is parent]

    def assemble(self) -> Tuple["Entity", ...]:
        if not self._sealed:
            for entity in self._entities.values():
                for ref in entity.references():
                    self.resolve(ref)
            self._check_overlaps()
            self._check_bucket_names()
            self._sealed = True
            pulumi.log.info(f"Assembled '{self.prefix}' with {len(self._entities)} declarations")
        return self.entities

    def _check_overlaps(self) -> None:
        networks = self.of_type(Network)
        for i, a in enumerate(networks):
            for b in networks[i + 1:]:
                if a.network.overlaps(b.network):
                    raise InvalidCidrError(f"Network '{a.name}' ({a.cidr}) overlaps '{b.name}' ({b.cidr})")

    def _check_bucket_names(self) -> None:
        seen = set()
        for bucket in self.of_type(ObjectStore):
            if bucket.bucket in seen:
                raise DuplicateNameError(f"Bucket name '{bucket.bucket}' is already declared")
            seen.add(bucket.bucket)


@dataclass(frozen=True, eq=False, repr=False)
class Entity:
    scope: DeclarationSet
    logical_id: str

    def __post_init__(self):
        if not isinstance(self.scope, DeclarationSet):
            raise DeclarationError(f"{type(self).__name__} needs a DeclarationSet, got {self.scope!r}")
        if not _LABEL.match(self.logical_id or ""):
            raise DeclarationError(f"Invalid logical id '{self.logical_id}'")
        self.link()
        self.validate()
        self.scope.register(self)

    @property
    def name(self) -> str:
        return self.scope.derive_name(self.logical_id)

    @property
    def parent(self) -> Optional["Entity"]:
        return None

    def link(self) -> None:
        """Replace reference fields with the resolved entities."""

    def validate(self) -> None:
        pass

    def references(self) -> Tuple["Entity", ...]:
        return ()

    def _link(self, field_name: str, expected: Type["Entity"]) -> None:
        _freeze(self, field_name, self.scope.resolve(getattr(self, field_name), expected))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


# --- Network ---


@dataclass(frozen=True)
class SubnetGroup:
    name: str
    subnet_type: SubnetType = SubnetType.PUBLIC
    cidr_mask: int = 24

    def __post_init__(self):
        if not _LABEL.match(self.name or ""):
            raise DeclarationError(f"Invalid subnet group name '{self.name}'")
        _freeze(self, "subnet_type", _coerce(SubnetType, self.subnet_type, "subnet type"))


@dataclass(frozen=True)
class SubnetPlan:
    group: SubnetGroup
    az_index: int
    cidr: str

    @property
    def logical_id(self) -> str:
        return f"{self.group.name}-subnet-{self.az_index + 1}"


@dataclass(frozen=True, eq=False, repr=False)
class Network(Entity):
    cidr: str = "10.0.0.0/16"
    subnet_groups: Tuple[SubnetGroup, ...] = (SubnetGroup("public"),)
    max_azs: int = 2
    availability_zones: Tuple[str, ...] = ()
    nat_gateways: int = 0
    enable_dns_hostnames: bool = True
    enable_dns_support: bool = True

    def validate(self) -> None:
        _freeze(self, "subnet_groups", tuple(self.subnet_groups))
        _freeze(self, "availability_zones", tuple(self.availability_zones))
        network = parse_cidr(self.cidr)
        if network.version != 4:
            raise InvalidCidrError(f"VPC range '{self.cidr}' must be IPv4")
        if not MIN_VPC_PREFIX <= network.prefixlen <= MAX_VPC_PREFIX:
            raise InvalidCidrError(
                f"VPC range '{self.cidr}' must be between /{MIN_VPC_PREFIX} and /{MAX_VPC_PREFIX}"
            )
        if not self.subnet_groups:
            raise DeclarationError(f"Network '{self.name}' declares no subnet groups")
        group_names = [g.name for g in self.subnet_groups]
        if len(set(group_names)) != len(group_names):
            raise DuplicateNameError(f"Network '{self.name}' repeats a subnet group name: {group_names}")
        for group in self.subnet_groups:
            if not network.prefixlen <= group.cidr_mask <= MAX_VPC_PREFIX:
                raise InvalidCidrError(
                    f"Subnet mask /{group.cidr_mask} of group '{group.name}' does not fit in {self.cidr}"
                )
        if self.max_azs < 1:
            raise DeclarationError(f"Network '{self.name}' needs at least one availability zone")
        if self.availability_zones and len(self.availability_zones) < self.max_azs:
            raise DeclarationError(
                f"Network '{self.name}' spans {self.max_azs} AZs but only "
                f"{len(self.availability_zones)} were given"
            )

        types = {g.subnet_type for g in self.subnet_groups}
        if self.nat_gateways < 0:
            raise DeclarationError(f"NAT gateway count must not be negative, got {self.nat_gateways}")
        if self.nat_gateways == 0 and SubnetType.PRIVATE in types:
            raise DeclarationError(
                f"Network '{self.name}' has private subnets but no NAT gateways; "
                "use isolated subnets or set nat_gateways > 0"
            )
        if self.nat_gateways > 0 and SubnetType.PUBLIC not in types:
            raise DeclarationError(f"NAT gateways of '{self.name}' need a public subnet group")
        if self.nat_gateways > self.max_azs:
            raise DeclarationError(
                f"Network '{self.name}' asks for {self.nat_gateways} NAT gateways across {self.max_azs} AZs"
            )
        self.plan_subnets()

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.ip_network(self.cidr)

    @property
    def has_public_subnets(self) -> bool:
        return any(g.subnet_type == SubnetType.PUBLIC for g in self.subnet_groups)

    def plan_subnets(self) -> List[SubnetPlan]:
        """Carve one subnet per AZ for every group, in declaration order.

        Each subnet starts at the next address aligned to its own mask.
        """
        network = self.network
        cursor = int(network.network_address)
        plans = []
        for group in self.subnet_groups:
            size = 2 ** (32 - group.cidr_mask)
            for az_index in range(self.max_azs):
                start = -(-cursor // size) * size
                subnet = ipaddress.IPv4Network((start, group.cidr_mask))
                if not subnet.subnet_of(network):
                    raise InvalidCidrError(f"Subnet layout of '{self.name}' does not fit in {self.cidr}")
                plans.append(SubnetPlan(group=group, az_index=az_index, cidr=str(subnet)))
                cursor = start + size
        return plans

    def subnets_of(self, group_name: str) -> List[SubnetPlan]:
        return [p for p in self.plan_subnets() if p.group.name == group_name]

    def select_group(self, subnet_type: SubnetType, group_name: Optional[str] = None) -> SubnetGroup:
        matches = [
            g for g in self.subnet_groups
            if g.subnet_type == subnet_type and (group_name is None or g.name == group_name)
        ]
        if len(matches) != 1:
            raise DeclarationError(
                f"Subnet selection ({subnet_type.value}, {group_name or 'any group'}) matches "
                f"{len(matches)} groups in '{self.name}', expected exactly one"
            )
        return matches[0]


# --- Security ---


def _source_slug(cidr: str) -> str:
    network = parse_cidr(cidr)
    if network.prefixlen == 0:
        return f"any-ipv{network.version}"
    address = re.sub(r"[.:]", "-", network.network_address.exploded)
    return f"{address}-{network.prefixlen}"


def _check_port(port, where: str) -> None:
    if isinstance(port, bool) or not isinstance(port, int):
        raise InvalidPortError(f"Port of '{where}' must be an integer, got {port!r}")
    if not MIN_PORT <= port <= MAX_PORT:
        raise InvalidPortError(f"Port {port} of '{where}' is outside [{MIN_PORT},{MAX_PORT}]")


def _check_protocol(protocol, where: str) -> None:
    if protocol not in ("tcp", "udp"):
        raise DeclarationError(f"Unsupported protocol '{protocol}' on '{where}'")


@dataclass(frozen=True, eq=False, repr=False)
class SecurityGroup(Entity):
    network: Union[Network, str] = None
    description: str = ""
    allow_all_outbound: bool = True

    def link(self) -> None:
        self._link("network", Network)

    def validate(self) -> None:
        # AWS reserves the sg- prefix for group ids.
        if self.name.startswith("sg-"):
            raise DeclarationError(f"Security group name '{self.name}' must not start with 'sg-'")

    def references(self) -> Tuple[Entity, ...]:
        return (self.network,)

    @property
    def ingress_rules(self) -> List["IngressRule"]:
        return self.scope.children_of(self, IngressRule)

    def add_ingress_rule(self, cidr: str, port: int, description: str = "", protocol: str = "tcp") -> "IngressRule":
        if isinstance(protocol, str):
            protocol = protocol.lower()
        _check_protocol(protocol, self.name)
        _check_port(port, self.name)
        logical_id = f"{self.logical_id}-{protocol}-{port}-{_source_slug(cidr)}"
        return IngressRule(
            self.scope,
            logical_id,
            security_group=self,
            cidr=cidr,
            port=port,
            protocol=protocol,
            description=description,
        )


@dataclass(frozen=True, eq=False, repr=False)
class IngressRule(Entity):
    security_group: Union[SecurityGroup, str] = None
    cidr: str = "0.0.0.0/0"
    port: int = None
    protocol: str = "tcp"
    description: str = ""

    def link(self) -> None:
        self._link("security_group", SecurityGroup)

    def validate(self) -> None:
        _check_port(self.port, self.name)
        _check_protocol(self.protocol, self.name)
        parse_cidr(self.cidr)

    @property
    def parent(self) -> Entity:
        return self.security_group

    @property
    def ip_version(self) -> int:
        return parse_cidr(self.cidr).version

    def references(self) -> Tuple[Entity, ...]:
        return (self.security_group,)


# --- Identity ---


@dataclass(frozen=True, eq=False, repr=False)
class IdentityRole(Entity):
    assumed_by: str = "ec2.amazonaws.com"
    managed_policies: Tuple[str, ...] = ()
    description: str = ""

    def validate(self) -> None:
        if not isinstance(self.assumed_by, str):
            raise DeclarationError(f"Role '{self.name}' must be trusted by exactly one principal")
        if not _SERVICE_PRINCIPAL.match(self.assumed_by):
            raise DeclarationError(f"'{self.assumed_by}' is not a service principal")
        _freeze(self, "managed_policies", tuple(self.managed_policies))
        for policy in self.managed_policies:
            if not _MANAGED_POLICY.match(policy):
                raise DeclarationError(f"Invalid managed policy name '{policy}'")

    @property
    def managed_policy_arns(self) -> List[str]:
        return [MANAGED_POLICY_ARN_PREFIX + policy for policy in self.managed_policies]

    def assume_role_policy(self) -> Dict[str, Any]:
        return {
            "Version": "2012-10-17",
            "Statement": [{
                "Effect": "Allow",
                "Principal": {"Service": self.assumed_by},
                "Action": "sts:AssumeRole",
            }],
        }


# --- Compute ---

AMI_NAME_FILTERS = {
    "amazon-linux-2": "amzn2-ami-hvm-*-x86_64-gp2",
    "amazon-linux-2023": "al2023-ami-2023.*-x86_64",
}


@dataclass(frozen=True)
class MachineImage:
    generation: str = "amazon-linux-2"
    ami_id: Optional[str] = None

    def __post_init__(self):
        if self.ami_id is None and self.generation not in AMI_NAME_FILTERS:
            raise DeclarationError(f"Unknown machine image generation '{self.generation}'")
        if self.ami_id is not None and not self.ami_id.startswith("ami-"):
            raise DeclarationError(f"'{self.ami_id}' is not an AMI id")

    @classmethod
    def parse(cls, value: str) -> "MachineImage":
        if not isinstance(value, str):
            raise DeclarationError(f"Machine image must be a generation name or AMI id, got {value!r}")
        if value.startswith("ami-"):
            return cls(generation="", ami_id=value)
        return cls(generation=value)

    @property
    def name_filter(self) -> Optional[str]:
        return None if self.ami_id else AMI_NAME_FILTERS[self.generation]


@dataclass(frozen=True, eq=False, repr=False)
class ComputeInstance(Entity):
    network: Union[Network, str] = None
    security_group: Union[SecurityGroup, str] = None
    role: Union[IdentityRole, str, None] = None
    instance_class: str = "t2"
    instance_size: str = "micro"
    machine_image: MachineImage = MachineImage()
    key_name: Optional[str] = None
    subnet_type: SubnetType = SubnetType.PUBLIC
    subnet_group: Optional[str] = None

    def link(self) -> None:
        self._link("network", Network)
        self._link("security_group", SecurityGroup)
        if self.role is not None:
            self._link("role", IdentityRole)

    def validate(self) -> None:
        if not _INSTANCE_CLASS.match(self.instance_class or "") or not _INSTANCE_SIZE.match(self.instance_size or ""):
            raise DeclarationError(f"Invalid instance type '{self.instance_class}.{self.instance_size}'")
        _freeze(self, "subnet_type", _coerce(SubnetType, self.subnet_type, "subnet type"))
        if self.security_group.network is not self.network:
            raise DeclarationError(
                f"Security group '{self.security_group.name}' belongs to another network than '{self.name}'"
            )
        self.network.select_group(self.subnet_type, self.subnet_group)

    @property
    def instance_type(self) -> str:
        return f"{self.instance_class}.{self.instance_size}"

    @property
    def placement(self) -> SubnetPlan:
        group = self.network.select_group(self.subnet_type, self.subnet_group)
        return self.network.subnets_of(group.name)[0]

    def references(self) -> Tuple[Entity, ...]:
        refs = (self.network, self.security_group)
        return refs + (self.role,) if self.role is not None else refs


# --- Storage ---

CORS_METHODS = ("GET", "PUT", "POST", "DELETE", "HEAD")


@dataclass(frozen=True)
class CorsRule:
    allowed_methods: Tuple[str, ...]
    allowed_origins: Tuple[str, ...]
    allowed_headers: Tuple[str, ...] = ("*",)
    exposed_headers: Tuple[str, ...] = ()
    max_age_seconds: Optional[int] = None

    def __post_init__(self):
        for name in ("allowed_methods", "allowed_origins", "allowed_headers", "exposed_headers"):
            _freeze(self, name, tuple(getattr(self, name)))
        if not self.allowed_origins:
            raise DeclarationError("CORS rule needs at least one allowed origin")
        bad = [m for m in self.allowed_methods if m not in CORS_METHODS]
        if bad or not self.allowed_methods:
            raise DeclarationError(f"Unsupported CORS methods {bad or list(self.allowed_methods)}")


@dataclass(frozen=True)
class Transition:
    storage_class: StorageClass = StorageClass.STANDARD_IA
    days: int = MIN_IA_TRANSITION_DAYS

    def __post_init__(self):
        _freeze(self, "storage_class", _coerce(StorageClass, self.storage_class, "storage class"))
        if isinstance(self.days, bool) or not isinstance(self.days, int):
            raise DeclarationError(f"Transition days must be an integer, got {self.days!r}")
        if self.days < 0:
            raise DeclarationError(f"Transition days must not be negative, got {self.days}")
        ia = (StorageClass.STANDARD_IA, StorageClass.ONEZONE_IA)
        if self.storage_class in ia and self.days < MIN_IA_TRANSITION_DAYS:
            raise DeclarationError(
                f"Transition to {self.storage_class.value} needs at least {MIN_IA_TRANSITION_DAYS} days"
            )


@dataclass(frozen=True)
class LifecycleRule:
    rule_id: str = "default"
    transitions: Tuple[Transition, ...] = ()
    expiration_days: Optional[int] = None
    abort_incomplete_upload_days: Optional[int] = None
    prefix: str = ""
    enabled: bool = True

    def __post_init__(self):
        _freeze(self, "transitions", tuple(self.transitions))
        if not (self.transitions or self.expiration_days or self.abort_incomplete_upload_days):
            raise DeclarationError(f"Lifecycle rule '{self.rule_id}' has no action")
        if self.expiration_days and any(t.days >= self.expiration_days for t in self.transitions):
            raise DeclarationError(f"Lifecycle rule '{self.rule_id}' expires objects before they transition")


@dataclass(frozen=True, eq=False, repr=False)
class ObjectStore(Entity):
    bucket_name: Optional[str] = None
    encryption: BucketEncryption = BucketEncryption.S3_MANAGED
    versioned: bool = False
    public_read_access: bool = False
    cors_rules: Tuple[CorsRule, ...] = ()
    lifecycle_rules: Tuple[LifecycleRule, ...] = ()
    removal_policy: RemovalPolicy = RemovalPolicy.RETAIN
    auto_delete_objects: bool = False

    def validate(self) -> None:
        _freeze(self, "cors_rules", tuple(self.cors_rules))
        _freeze(self, "lifecycle_rules", tuple(self.lifecycle_rules))
        _freeze(self, "encryption", _coerce(BucketEncryption, self.encryption, "bucket encryption"))
        _freeze(self, "removal_policy", _coerce(RemovalPolicy, self.removal_policy, "removal policy"))
        name = self.bucket
        if not _BUCKET_NAME.match(name) or ".." in name or re.match(r"^\d+\.\d+\.\d+\.\d+$", name):
            raise DeclarationError(f"'{name}' is not a valid S3 bucket name")
        if self.auto_delete_objects and self.removal_policy != RemovalPolicy.DESTROY:
            raise DeclarationError(
                f"Bucket '{name}' sets auto_delete_objects without removal policy 'destroy'"
            )
        rule_ids = [r.rule_id for r in self.lifecycle_rules]
        if len(set(rule_ids)) != len(rule_ids):
            raise DuplicateNameError(f"Bucket '{name}' repeats a lifecycle rule id: {rule_ids}")

    @property
    def bucket(self) -> str:
        return self.bucket_name or self.name

    @property
    def arn(self) -> str:
        return f"arn:aws:s3:::{self.bucket}"

    @property
    def force_destroy(self) -> bool:
        # Pulumi's force_destroy deletes every object version, so versioned buckets empty fully.
        return self.removal_policy == RemovalPolicy.DESTROY and self.auto_delete_objects

    @property
    def policy_statements(self) -> List["BucketPolicyStatement"]:
        return self.scope.children_of(self, BucketPolicyStatement)


@dataclass(frozen=True, eq=False, repr=False)
class BucketPolicyStatement(Entity):
    bucket: Union[ObjectStore, str] = None
    actions: Tuple[str, ...] = ()
    principals: Tuple[str, ...] = ("ec2.amazonaws.com",)
    effect: str = "Allow"
    resources: Tuple[str, ...] = ("", "/*")

    def link(self) -> None:
        self._link("bucket", ObjectStore)

    def validate(self) -> None:
        _freeze(self, "actions", tuple(self.actions))
        _freeze(self, "principals", tuple(self.principals))
        if self.effect not in ("Allow", "Deny"):
            raise DeclarationError(f"Policy effect must be Allow or Deny, got '{self.effect}'")
        if not self.actions:
            raise DeclarationError(f"Policy statement '{self.name}' has no actions")
        for action in self.actions:
            if not _S3_ACTION.match(action):
                raise DeclarationError(f"'{action}' is not an S3 action")
        if not self.principals:
            raise DeclarationError(f"Policy statement '{self.name}' has no principals")
        _freeze(self, "resources", tuple(self._relative_path(r) for r in self.resources))

    def _relative_path(self, resource: str) -> str:
        arn = self.bucket.arn
        if resource.startswith(arn):
            resource = resource[len(arn):]
        if resource and not resource.startswith("/"):
            raise DeclarationError(f"Resource '{resource}' is not part of bucket '{self.bucket.bucket}'")
        return resource

    @property
    def parent(self) -> Entity:
        return self.bucket

    def references(self) -> Tuple[Entity, ...]:
        return (self.bucket,)

    def principal_block(self) -> Any:
        if self.principals == ("*",):
            return "*"
        block: Dict[str, List[str]] = {}
        for principal in self.principals:
            key = "Service" if _SERVICE_PRINCIPAL.match(principal) else "AWS"
            block.setdefault(key, []).append(principal)
        return block

    def document(self, bucket_arn: str) -> Dict[str, Any]:
        return {
            "Sid": re.sub(r"[^A-Za-z0-9]", "", self.logical_id.title()),
            "Effect": self.effect,
            "Principal": self.principal_block(),
            "Action": list(self.actions),
            "Resource": [bucket_arn + path for path in self.resources],
        }
