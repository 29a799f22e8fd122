"""
Declarative description of the TKG network.

The layout is fixed: one VPC, a private and a public /24 subnet per
availability zone, a NAT gateway in the first public subnet, a transit
gateway attached to the private subnets, and one route table per role.
"""

import ipaddress
from dataclasses import dataclass

from .console import fatal, warn

PRIVATE = "priv"
PUBLIC = "pub"
ROLES = (PRIVATE, PUBLIC)
SUBNET_PREFIX = 24
MIN_ZONES = 3


@dataclass(frozen=True)
class SubnetSpec:
    role: str
    zone: str
    suffix: str
    cidr: str

    @property
    def key(self) -> str:
        return f"subnet-{self.role}-{self.suffix}"

    @property
    def name(self) -> str:
        return f"{self.role}-{self.suffix}"

    @property
    def public(self) -> bool:
        return self.role == PUBLIC


@dataclass(frozen=True)
class RouteTableSpec:
    role: str
    name: str
    default_via: str  # "nat" or "internet"
    subnets: tuple[SubnetSpec, ...]

    @property
    def key(self) -> str:
        return f"{self.role}-rt"

    @property
    def associations_key(self) -> str:
        return f"{self.role}-rt-associations"


@dataclass(frozen=True)
class NetworkTopology:
    tag: str
    region: str
    vpc_cidr: str
    internal_cidr: str
    subnets: tuple[SubnetSpec, ...]
    route_tables: tuple[RouteTableSpec, ...]

    @property
    def vpc_name(self) -> str:
        return f"TKGVPC-{self.tag}"

    @property
    def internet_gateway_name(self) -> str:
        return f"tkg-inet-gw-{self.tag}"

    def subnets_for(self, role: str) -> tuple[SubnetSpec, ...]:
        return tuple(s for s in self.subnets if s.role == role)

    @property
    def private_subnets(self) -> tuple[SubnetSpec, ...]:
        return self.subnets_for(PRIVATE)

    @property
    def public_subnets(self) -> tuple[SubnetSpec, ...]:
        return self.subnets_for(PUBLIC)

    @property
    def anchor_subnet(self) -> SubnetSpec:
        """Public subnet hosting the NAT gateway and the jumpbox."""
        return self.public_subnets[0]


def zone_suffix(region: str, zone: str) -> str:
    return zone[len(region):] if zone.startswith(region) else zone


def plan_network(region: str, zones: list[str], tag: str,
                 vpc_cidr: str = "172.16.0.0/16",
                 internal_cidr: str = "172.16.0.0/12") -> NetworkTopology:
    """Lay out subnets and route tables for ``zones``.

    CIDR blocks come from a counter over the /24 blocks of the VPC range:
    every private subnet first, in zone order, then every public one.
    """
    if not zones:
        fatal(f"No availability zones found in region {region}")

    vpc = ipaddress.ip_network(vpc_cidr)
    blocks = vpc.subnets(new_prefix=SUBNET_PREFIX)
    subnets = []
    for role in ROLES:
        for zone in zones:
            block = next(blocks, None)
            if block is None:
                fatal(f"VPC range {vpc_cidr} has no room for {len(zones) * len(ROLES)} subnets")
            subnets.append(SubnetSpec(role, zone, zone_suffix(region, zone), str(block)))

    subnets = tuple(subnets)
    route_tables = (
        RouteTableSpec(PRIVATE, f"tkgvpc-priv-rt-{tag}", "nat",
                       tuple(s for s in subnets if s.role == PRIVATE)),
        RouteTableSpec(PUBLIC, f"tkgvpc-pub-rt-{tag}", "internet",
                       tuple(s for s in subnets if s.role == PUBLIC)),
    )
    return NetworkTopology(tag, region, vpc_cidr, internal_cidr, subnets, route_tables)


def find_availability_zones(ec2) -> list[str]:
    response = ec2.describe_availability_zones(
        Filters=[{"Name": "state", "Values": ["available"]}])
    return sorted(z["ZoneName"] for z in response["AvailabilityZones"])


def check_availability_zones(zones: list[str]):
    if len(zones) < MIN_ZONES:
        warn(f"Too few availability zones. Need {MIN_ZONES} for production deployment "
             f"but only found {len(zones)}")
