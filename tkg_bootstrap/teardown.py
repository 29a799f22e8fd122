"""
Best-effort teardown of everything recorded in a state directory.

Resource kinds declare what they depend on; deletion runs in reverse
topological order of that graph so attachments, associations and the
instance go before the gateways, subnets and VPC they rely on. Deletes are
fire-and-forget: a failure is reported and the operator re-runs the command.
"""

from dataclasses import dataclass, field
from graphlib import TopologicalSorter
from typing import Callable

from botocore.exceptions import ClientError

from .console import banner, error, message, show_call, success
from .jumpbox import DESCRIBED_KEY, INSTANCE_KEY, KEY_FILE, KEY_PAIR_KEY, SECURITY_GROUP_KEY
from .provisioner import error_code
from .state import StateStore

NOT_ATTACHED = "Gateway.NotAttached"


def already_gone(e: ClientError) -> bool:
    return error_code(e).endswith("NotFound")


@dataclass(frozen=True)
class ResourceKind:
    name: str
    depends_on: tuple[str, ...]
    delete: Callable[[object, StateStore, str], None]
    keys: tuple[str, ...] = ()
    prefix: str = ""
    companions: tuple[str, ...] = ()
    files: tuple[str, ...] = ()

    def records(self, store: StateStore) -> list[str]:
        keys = store.keys(self.prefix) if self.prefix else list(self.keys)
        return [k for k in keys if store.usable(k)]


# ─────────────────────────────────────────────────────────────────────────────
# DELETE ACTIONS
# ─────────────────────────────────────────────────────────────────────────────

def _terminate_instance(ec2, store, key):
    instance_id = store.find_id(key, "Instances[0].InstanceId")
    show_call(f"Terminating jumpbox instance {instance_id}")
    ec2.terminate_instances(InstanceIds=[instance_id])


def _delete_key_pair(ec2, store, key):
    key_name = store.find_id(key, "KeyName")
    show_call(f"Deleting key pair {key_name}")
    ec2.delete_key_pair(KeyName=key_name)


def _delete_security_group(ec2, store, key):
    group_id = store.find_id(key, "GroupId")
    show_call(f"Removing security group {group_id}")
    ec2.delete_security_group(GroupId=group_id)


def _disassociate_route_table(ec2, store, key):
    associations = store.read(key)
    for association_id in sorted({a.get("AssociationId") for a in associations.values()} - {None}):
        show_call(f"Removing route table association {association_id}")
        try:
            ec2.disassociate_route_table(AssociationId=association_id)
        except ClientError as e:
            if not already_gone(e):
                raise


def _delete_route_table(ec2, store, key):
    route_table_id = store.find_id(key, "RouteTable.RouteTableId")
    show_call(f"Deleting route table {route_table_id}")
    ec2.delete_route_table(RouteTableId=route_table_id)


def _delete_transit_attachment(ec2, store, key):
    attachment_id = store.find_id(key, "TransitGatewayVpcAttachment.TransitGatewayAttachmentId")
    show_call(f"Deleting transit gateway VPC attachment {attachment_id}")
    ec2.delete_transit_gateway_vpc_attachment(TransitGatewayAttachmentId=attachment_id)


def _delete_transit_gateway(ec2, store, key):
    tgw_id = store.find_id(key, "TransitGateway.TransitGatewayId")
    show_call(f"Deleting transit gateway {tgw_id}")
    ec2.delete_transit_gateway(TransitGatewayId=tgw_id)


def _delete_nat_gateway(ec2, store, key):
    nat_id = store.find_id(key, "NatGateway.NatGatewayId")
    show_call(f"Deleting NAT gateway {nat_id}")
    ec2.delete_nat_gateway(NatGatewayId=nat_id)


def _release_address(ec2, store, key):
    allocation_id = store.find_id(key, "AllocationId")
    show_call(f"Releasing IP address allocation {allocation_id}")
    ec2.release_address(AllocationId=allocation_id)


def _delete_internet_gateway(ec2, store, key):
    igw_id = store.find_id(key, "InternetGateway.InternetGatewayId")
    if store.usable("vpc"):
        vpc_id = store.find_id("vpc", "Vpc.VpcId")
        show_call(f"Detaching Internet gateway {igw_id} from {vpc_id}")
        try:
            ec2.detach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)
        except ClientError as e:
            if error_code(e) != NOT_ATTACHED and not already_gone(e):
                raise
    show_call(f"Deleting Internet gateway {igw_id}")
    ec2.delete_internet_gateway(InternetGatewayId=igw_id)


def _delete_subnet(ec2, store, key):
    subnet_id = store.find_id(key, "Subnet.SubnetId")
    show_call(f"Deleting subnet {subnet_id}")
    ec2.delete_subnet(SubnetId=subnet_id)


def _delete_vpc(ec2, store, key):
    vpc_id = store.find_id(key, "Vpc.VpcId")
    show_call(f"Deleting VPC {vpc_id}")
    ec2.delete_vpc(VpcId=vpc_id)


RESOURCE_KINDS = {kind.name: kind for kind in (
    ResourceKind("vpc", (), _delete_vpc, keys=("vpc",)),
    ResourceKind("subnet", ("vpc",), _delete_subnet, prefix="subnet-"),
    ResourceKind("inet-gw", ("vpc",), _delete_internet_gateway, keys=("inet-gw",)),
    ResourceKind("nat-eip", (), _release_address, keys=("nat-eip",)),
    ResourceKind("nat-gw", ("subnet", "nat-eip"), _delete_nat_gateway, keys=("nat-gw",)),
    ResourceKind("transit-gw", (), _delete_transit_gateway, keys=("transit-gw",)),
    ResourceKind("transit-attachment", ("transit-gw", "vpc", "subnet"),
                 _delete_transit_attachment, keys=("attachment-transit-gw",)),
    ResourceKind("priv-rt", ("vpc", "nat-gw", "transit-attachment"),
                 _delete_route_table, keys=("priv-rt",)),
    ResourceKind("priv-rt-associations", ("priv-rt", "subnet"),
                 _disassociate_route_table, keys=("priv-rt-associations",)),
    ResourceKind("pub-rt", ("vpc", "inet-gw", "transit-attachment"),
                 _delete_route_table, keys=("pub-rt",)),
    ResourceKind("pub-rt-associations", ("pub-rt", "subnet"),
                 _disassociate_route_table, keys=("pub-rt-associations",)),
    ResourceKind("security-group", ("vpc",), _delete_security_group, keys=(SECURITY_GROUP_KEY,)),
    ResourceKind("key-pair", (), _delete_key_pair, keys=(KEY_PAIR_KEY,), files=(KEY_FILE,)),
    ResourceKind("instance", ("security-group", "key-pair", "subnet", "inet-gw"),
                 _terminate_instance, keys=(INSTANCE_KEY,), companions=(DESCRIBED_KEY,)),
)}


def teardown_order(kinds: dict[str, ResourceKind] = RESOURCE_KINDS) -> list[str]:
    """Kind names, dependents before their dependencies."""
    graph = {name: set(kind.depends_on) for name, kind in kinds.items()}
    return list(reversed(list(TopologicalSorter(graph).static_order())))


# ─────────────────────────────────────────────────────────────────────────────
# DRIVER
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class TeardownReport:
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class TeardownDriver:
    """Issues one delete per recorded resource, in dependency-safe order."""

    def __init__(self, store: StateStore, ec2, kinds: dict[str, ResourceKind] = RESOURCE_KINDS):
        self.store = store
        self.ec2 = ec2
        self.kinds = kinds

    def run(self) -> TeardownReport:
        banner("Starting cleanup")
        report = TeardownReport()

        for name in teardown_order(self.kinds):
            kind = self.kinds[name]
            for key in kind.records(self.store):
                try:
                    kind.delete(self.ec2, self.store, key)
                except ClientError as e:
                    if not already_gone(e):
                        error(f"{key}: {e}")
                        report.failed[key] = str(e)
                        continue
                    message(f"{key}: already deleted")
                self._forget(kind, key)
                report.deleted.append(key)

        if report.ok:
            success(f"Deleted {len(report.deleted)} resources")
        else:
            error(f"{len(report.failed)} deletions failed; re-run cleanup once dependent "
                  "resources have finished deleting")
        return report

    def _forget(self, kind: ResourceKind, key: str):
        self.store.delete(key)
        for companion in kind.companions:
            self.store.delete(companion)
        for name in kind.files:
            self.store.remove_file(name)
