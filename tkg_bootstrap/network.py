"""
Builds the network described by a NetworkTopology.

Each resource goes through the provisioner, so a second run against the same
state directory reuses every record and issues no creation call.
"""

from dataclasses import dataclass, field

from .config import InstallContext
from .console import banner, message, show_call
from .provisioner import (
    ALREADY_ASSOCIATED,
    ROUTE_ALREADY_EXISTS,
    Provisioner,
    name_tags,
    tolerate,
)
from .state import strip_metadata
from .topology import PUBLIC, NetworkTopology, RouteTableSpec
from .waiters import wait_for_transit_gateway

ANYWHERE = "0.0.0.0/0"


@dataclass
class NetworkIds:
    vpc_id: str = ""
    subnet_ids: dict[str, str] = field(default_factory=dict)
    internet_gateway_id: str = ""
    allocation_id: str = ""
    nat_gateway_id: str = ""
    transit_gateway_id: str = ""
    transit_attachment_id: str = ""
    route_table_ids: dict[str, str] = field(default_factory=dict)


class NetworkBuilder:
    """Creates (or reuses) every network resource in dependency order."""

    def __init__(self, ctx: InstallContext, topology: NetworkTopology):
        self.ctx = ctx
        self.topology = topology
        self.ec2 = ctx.ec2
        self.store = ctx.store
        self.provisioner = Provisioner(ctx.store, self.ec2)
        self.ids = NetworkIds()

    def build(self) -> NetworkIds:
        self.create_vpc()
        self.create_subnets()
        self.create_internet_gateway()
        self.create_nat_gateway()
        self.create_transit_gateway()
        for spec in self.topology.route_tables:
            self.create_route_table(spec)
        return self.ids

    def _wait_kwargs(self) -> dict:
        config = self.ctx.config
        return {"interval": config.poll_interval, "timeout": config.wait_timeout}

    def _waiter_config(self) -> dict:
        config = self.ctx.config
        delay = max(1, int(config.poll_interval))
        return {"Delay": delay, "MaxAttempts": max(1, int(config.wait_timeout // delay))}

    # ─── VPC and subnets ───

    def create_vpc(self) -> str:
        banner("Creating VPC")
        self.ids.vpc_id = self.provisioner.ensure(
            "vpc",
            lambda: self.ec2.create_vpc(
                CidrBlock=self.topology.vpc_cidr,
                TagSpecifications=name_tags("vpc", self.topology.vpc_name),
            ),
            "Vpc.VpcId",
            "VPC",
        )
        return self.ids.vpc_id

    def create_subnets(self):
        banner("Creating subnets in each AZ")
        for spec in self.topology.subnets:
            self.ids.subnet_ids[spec.key] = self.provisioner.ensure(
                spec.key,
                lambda spec=spec: self.ec2.create_subnet(
                    VpcId=self.ids.vpc_id,
                    CidrBlock=spec.cidr,
                    AvailabilityZone=spec.zone,
                    TagSpecifications=name_tags("subnet", spec.name),
                ),
                "Subnet.SubnetId",
                f"Subnet {spec.name}",
            )

        message("Setting map-public-ip-on-launch for public subnets")
        for spec in self.topology.public_subnets:
            self.ec2.modify_subnet_attribute(
                SubnetId=self.ids.subnet_ids[spec.key],
                MapPublicIpOnLaunch={"Value": True},
            )

    # ─── gateways ───

    def create_internet_gateway(self) -> str:
        banner("Creating Internet gateway and attaching to VPC")
        igw_id = self.provisioner.ensure(
            "inet-gw",
            self.ec2.create_internet_gateway,
            "InternetGateway.InternetGatewayId",
            "Internet gateway",
        )
        self.provisioner.tag_resource(igw_id, self.topology.internet_gateway_name)

        response = self.ec2.describe_internet_gateways(InternetGatewayIds=[igw_id])
        attached = {
            a["VpcId"]
            for gw in response["InternetGateways"]
            for a in gw.get("Attachments", [])
        }
        if self.ids.vpc_id in attached:
            message("VPC already attached to gateway")
        else:
            show_call(f"Attaching {igw_id} to {self.ids.vpc_id}")
            self.ec2.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=self.ids.vpc_id)

        self.ids.internet_gateway_id = igw_id
        return igw_id

    def create_nat_gateway(self) -> str:
        banner("Allocating IP address and creating NAT gateway")
        self.ids.allocation_id = self.provisioner.ensure(
            "nat-eip",
            lambda: self.ec2.allocate_address(Domain="vpc"),
            "AllocationId",
            "Elastic IP allocation",
        )

        anchor = self.topology.anchor_subnet
        self.ids.nat_gateway_id = self.provisioner.ensure(
            "nat-gw",
            lambda: self.ec2.create_nat_gateway(
                SubnetId=self.ids.subnet_ids[anchor.key],
                AllocationId=self.ids.allocation_id,
            ),
            "NatGateway.NatGatewayId",
            "NAT gateway",
        )

        message("Waiting for NAT gateway to become available...")
        self.ec2.get_waiter("nat_gateway_available").wait(
            NatGatewayIds=[self.ids.nat_gateway_id],
            WaiterConfig=self._waiter_config(),
        )
        return self.ids.nat_gateway_id

    def create_transit_gateway(self) -> str:
        banner("Creating transit gateway attaching to VPC")
        tgw_id = self.provisioner.ensure(
            "transit-gw",
            lambda: self.ec2.create_transit_gateway(
                Description="For TKG Transit",
                TagSpecifications=name_tags("transit-gateway", f"tkg-transit-gw-{self.ctx.tag}"),
            ),
            "TransitGateway.TransitGatewayId",
            "Transit gateway",
        )
        self.ids.transit_gateway_id = tgw_id

        wait_for_transit_gateway(self.ec2, tgw_id, **self._wait_kwargs())

        private_ids = [self.ids.subnet_ids[s.key] for s in self.topology.private_subnets]
        self.ids.transit_attachment_id = self.provisioner.ensure(
            "attachment-transit-gw",
            lambda: self.ec2.create_transit_gateway_vpc_attachment(
                TransitGatewayId=tgw_id,
                VpcId=self.ids.vpc_id,
                SubnetIds=private_ids,
            ),
            "TransitGatewayVpcAttachment.TransitGatewayAttachmentId",
            "Transit gateway VPC attachment",
        )
        return tgw_id

    # ─── routing ───

    def create_route_table(self, spec: RouteTableSpec) -> str:
        banner(f"Creating route table for {'public' if spec.role == PUBLIC else 'private'} subnets")
        rt_id = self.provisioner.ensure(
            spec.key,
            lambda: self.ec2.create_route_table(VpcId=self.ids.vpc_id),
            "RouteTable.RouteTableId",
            f"{spec.role} route table",
        )
        self.ids.route_table_ids[spec.key] = rt_id
        self.provisioner.tag_resource(rt_id, spec.name)

        if spec.default_via == "nat":
            target = {"NatGatewayId": self.ids.nat_gateway_id}
        else:
            target = {"GatewayId": self.ids.internet_gateway_id}
        show_call(f"Default route for {rt_id} via {next(iter(target.values()))}")
        with tolerate(ROUTE_ALREADY_EXISTS):
            self.ec2.create_route(RouteTableId=rt_id, DestinationCidrBlock=ANYWHERE, **target)

        # Route internal (corporate) addresses through the transit gateway
        wait_for_transit_gateway(self.ec2, self.ids.transit_gateway_id, **self._wait_kwargs())
        show_call(f"Route {self.topology.internal_cidr} for {rt_id} via transit gateway")
        with tolerate(ROUTE_ALREADY_EXISTS):
            self.ec2.create_route(
                RouteTableId=rt_id,
                DestinationCidrBlock=self.topology.internal_cidr,
                TransitGatewayId=self.ids.transit_gateway_id,
            )

        self.associate_subnets(spec, rt_id)
        return rt_id

    def associate_subnets(self, spec: RouteTableSpec, rt_id: str):
        """Associate each subnet once; the associations record maps subnet id to response."""
        message(f"Associating {spec.role} route table with subnets")
        key = spec.associations_key
        associations = self.store.read(key) if self.store.usable(key) else {}

        for subnet in spec.subnets:
            subnet_id = self.ids.subnet_ids[subnet.key]
            if subnet_id in associations:
                continue
            with tolerate(ALREADY_ASSOCIATED):
                response = self.ec2.associate_route_table(SubnetId=subnet_id, RouteTableId=rt_id)
                associations[subnet_id] = strip_metadata(response)
                self.store.write(key, associations)


def build_network(ctx: InstallContext, topology: NetworkTopology) -> NetworkIds:
    return NetworkBuilder(ctx, topology).build()
