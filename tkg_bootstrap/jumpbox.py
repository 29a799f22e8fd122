"""
The jumpbox: security group, key pair, EC2 instance and SSH readiness.
"""

import re

import requests

from .config import InstallContext
from .console import banner, fatal, message, show_call, success, warn
from .provisioner import DUPLICATE_PERMISSION, Provisioner, name_tags, tolerate
from .remote import READY_TOKEN, RemoteHost
from .state import lookup, strip_metadata
from .topology import NetworkTopology
from .waiters import poll_until

UBUNTU_LOCATOR_URL = "https://cloud-images.ubuntu.com/locator/ec2/releasesTable"
UBUNTU_CODENAME = "focal"
ROOT_VOLUME_GB = 64

SECURITY_GROUP_KEY = "sg-jumpbox-ssh"
KEY_PAIR_KEY = "key-pair"
KEY_FILE = "tkgkp.pem"
INSTANCE_KEY = "instance-jumpbox"
DESCRIBED_KEY = "instance-jumpbox-described"

_IPV4 = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")


def find_ami(region: str, codename: str = UBUNTU_CODENAME) -> str:
    """Look up the amd64 EBS-SSD Ubuntu image for ``region`` in the cloud image locator."""
    try:
        response = requests.get(UBUNTU_LOCATOR_URL, timeout=30)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        fatal(f"Could not query Ubuntu image locator: {e}")

    row = re.compile(rf'"{re.escape(region)}".*"{re.escape(codename)}".*"amd64".*"hvm:ebs-ssd"')
    for line in response.text.splitlines():
        if row.search(line):
            match = re.search(r"launchAmi=(ami-[a-f0-9]+)", line)
            if match:
                return match.group(1)

    fatal(f"No Ubuntu {codename} amd64 hvm:ebs-ssd image found for region {region}")


class Jumpbox:
    """Creates the jumpbox and gives SSH access to it."""

    def __init__(self, ctx: InstallContext, topology: NetworkTopology):
        self.ctx = ctx
        self.topology = topology
        self.ec2 = ctx.ec2
        self.store = ctx.store
        self.provisioner = Provisioner(ctx.store, self.ec2)
        self._public_ip = ""
        self.remote = RemoteHost(self.public_ip, self.key_file)

    @property
    def key_file(self):
        return self.store.path(KEY_FILE)

    @property
    def key_name(self) -> str:
        return self.ctx.config.key_name

    # ─── creation ───

    def create(self):
        banner("Creating jumpbox")
        vpc_id = self.store.find_id("vpc", "Vpc.VpcId")
        group_id = self.ensure_security_group(vpc_id)
        self.ensure_key_pair()
        self.ensure_instance(group_id)
        self.wait_until_ready()

    def ensure_security_group(self, vpc_id: str) -> str:
        name = f"jumpbox-ssh-{self.ctx.tag}"
        group_id = self.provisioner.ensure(
            SECURITY_GROUP_KEY,
            lambda: self.ec2.create_security_group(
                GroupName=name,
                Description=f"To Jumpbox {self.ctx.tag}",
                VpcId=vpc_id,
            ),
            "GroupId",
            "Security group",
        )
        self.provisioner.tag_resource(group_id, name)

        message("Authorizing SSH to jumpbox")
        with tolerate(DUPLICATE_PERMISSION):
            self.ec2.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[{
                    "IpProtocol": "tcp",
                    "FromPort": 22,
                    "ToPort": 22,
                    "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
                }],
            )
        return group_id

    def ensure_key_pair(self) -> str:
        """Create the key pair once; the private key only ever lives in the pem file."""
        if self.store.usable(KEY_PAIR_KEY) and self.key_file.is_file():
            message("Using previously created key-pair")
        else:
            if self.store.usable(KEY_PAIR_KEY):
                self.replace_stale_key_pair()
            show_call(f"Creating key pair {self.key_name}")
            response = self.ec2.create_key_pair(KeyName=self.key_name)
            self.store.write_private(KEY_FILE, response["KeyMaterial"])
            self.store.write(KEY_PAIR_KEY, {
                k: v for k, v in strip_metadata(response).items() if k != "KeyMaterial"
            })
        return self.store.find_id(KEY_PAIR_KEY, "KeyName")

    def replace_stale_key_pair(self):
        """Drop a recorded key pair whose pem file is gone so it can be created again."""
        stale = self.store.find_id(KEY_PAIR_KEY, "KeyName")
        if self.store.usable(INSTANCE_KEY):
            fatal(
                f"Private key {self.key_file} for key pair {stale} is missing",
                "The jumpbox was launched with that key; run tkg-cleanup and install again",
            )
        warn(f"Private key {self.key_file} is missing; replacing key pair {stale}")
        self.ec2.delete_key_pair(KeyName=stale)
        self.store.delete(KEY_PAIR_KEY)

    def ensure_instance(self, group_id: str) -> str:
        anchor = self.topology.anchor_subnet

        def run_instance():
            ami_id = self.ctx.config.jumpbox_ami or find_ami(self.ctx.config.region)
            message(f"Using AMI {ami_id}")
            return self.ec2.run_instances(
                ImageId=ami_id,
                MinCount=1,
                MaxCount=1,
                InstanceType=self.ctx.config.instance_type,
                KeyName=self.key_name,
                SecurityGroupIds=[group_id],
                SubnetId=self.store.find_id(anchor.key, "Subnet.SubnetId"),
                TagSpecifications=name_tags("instance", f"tkg-jumpbox-{self.ctx.tag}"),
                BlockDeviceMappings=[{
                    "DeviceName": "/dev/sda1",
                    "Ebs": {"VolumeSize": ROOT_VOLUME_GB},
                }],
            )

        return self.provisioner.ensure(INSTANCE_KEY, run_instance, "Instances[0].InstanceId", "Jumpbox")

    # ─── access ───

    def instance_id(self) -> str:
        return self.store.find_id(INSTANCE_KEY, "Instances[0].InstanceId")

    def resolve_public_ip(self) -> str:
        """Describe the instance; returns '' while it has no public address yet."""
        if self._public_ip:
            return self._public_ip

        response = self.ec2.describe_instances(InstanceIds=[self.instance_id()])
        self.store.write(DESCRIBED_KEY, response)
        ip = lookup(self.store.read(DESCRIBED_KEY), "Reservations[0].Instances[0].PublicIpAddress")
        if ip and _IPV4.match(ip):
            self._public_ip = ip
        return self._public_ip

    def public_ip(self) -> str:
        ip = self.resolve_public_ip()
        if not ip:
            fatal(f"Jumpbox {self.instance_id()} has no public IP address")
        return ip

    def _probe(self) -> str:
        if not self.resolve_public_ip():
            return "not-ready"
        return self.remote.probe()

    def wait_until_ready(self, **kwargs):
        config = self.ctx.config
        kwargs.setdefault("interval", config.poll_interval)
        kwargs.setdefault("timeout", config.wait_timeout)
        poll_until(
            self._probe,
            lambda status: status == READY_TOKEN,
            description="Waiting for jumpbox",
            sleep_first=True,
            **kwargs,
        )
        success("Jumpbox ready")
