#!/usr/bin/env python3
"""
TKG AWS Installer

Provisions the TKG network and jumpbox, bootstraps the jumpbox and starts the
TKG management-cluster installer on it.

Stages:
  1. NETWORK: VPC, subnets, internet/NAT/transit gateways, route tables
  2. JUMPBOX: security group, key pair, instance, SSH readiness
  3. SOFTWARE: base packages, kubectl, kind, Tanzu CLI
  4. IAM: TKG CloudFormation stack (only when missing)
  5. INSTALLER: temporary credentials + installer UI over an SSH tunnel

Re-running with the same tag and state directory resumes: every resource
already recorded is reused.
"""

import argparse
import subprocess
import sys
from enum import Enum

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from rich.panel import Panel
from rich.table import Table

from .config import (
    InstallConfig,
    InstallContext,
    get_aws_session,
    load_install_config,
    resolve_location,
)
from .console import FatalError, console, err_console, error, success
from .jumpbox import Jumpbox
from .network import build_network
from .state import StateStore, lookup
from .tanzu import ensure_iam_stack, install_tanzu_software, start_installer, update_jumpbox
from .topology import check_availability_zones, find_availability_zones, plan_network

# Identifier lookups for --status, by record key prefix
STATUS_EXPRESSIONS = {
    "vpc": "Vpc.VpcId",
    "subnet-": "Subnet.SubnetId",
    "inet-gw": "InternetGateway.InternetGatewayId",
    "nat-eip": "AllocationId",
    "nat-gw": "NatGateway.NatGatewayId",
    "transit-gw": "TransitGateway.TransitGatewayId",
    "attachment-transit-gw": "TransitGatewayVpcAttachment.TransitGatewayAttachmentId",
    "priv-rt": "RouteTable.RouteTableId",
    "pub-rt": "RouteTable.RouteTableId",
    "sg-jumpbox-ssh": "GroupId",
    "key-pair": "KeyName",
    "instance-jumpbox": "Instances[0].InstanceId",
}


class InstallStage(str, Enum):
    NETWORK = "network"
    JUMPBOX = "jumpbox"
    SOFTWARE = "software"
    IAM = "iam"
    INSTALLER = "installer"


NETWORK_ONLY_STAGES = (InstallStage.NETWORK, InstallStage.JUMPBOX)

RESUME_HINT = "[dim]Fix the cause and re-run with the same tag to resume.[/dim]"


# ─────────────────────────────────────────────────────────────────────────────
# ORCHESTRATOR
# ─────────────────────────────────────────────────────────────────────────────

class Orchestrator:
    """Runs the install stages in order against one installation context."""

    def __init__(self, ctx: InstallContext):
        self.ctx = ctx
        self.topology = None
        self.jumpbox = None

    def stages(self, network_only: bool = False) -> tuple[InstallStage, ...]:
        return NETWORK_ONLY_STAGES if network_only else tuple(InstallStage)

    def run(self, network_only: bool = False):
        handlers = {
            InstallStage.NETWORK: self._run_network,
            InstallStage.JUMPBOX: self._run_jumpbox,
            InstallStage.SOFTWARE: self._run_software,
            InstallStage.IAM: self._run_iam,
            InstallStage.INSTALLER: self._run_installer,
        }
        for stage in self.stages(network_only):
            handlers[stage]()

    def _run_network(self):
        zones = find_availability_zones(self.ctx.ec2)
        check_availability_zones(zones)
        config = self.ctx.config
        self.topology = plan_network(
            config.region, zones, self.ctx.tag,
            vpc_cidr=config.vpc_cidr, internal_cidr=config.internal_cidr,
        )
        build_network(self.ctx, self.topology)

    def _run_jumpbox(self):
        self.jumpbox = Jumpbox(self.ctx, self.topology)
        self.jumpbox.create()

    def _run_software(self):
        update_jumpbox(self.ctx, self.jumpbox)
        install_tanzu_software(self.ctx, self.jumpbox)

    def _run_iam(self):
        ensure_iam_stack(self.ctx)

    def _run_installer(self):
        start_installer(self.ctx, self.jumpbox)


# ─────────────────────────────────────────────────────────────────────────────
# STATUS
# ─────────────────────────────────────────────────────────────────────────────

def _status_expression(key: str) -> str | None:
    for prefix, expression in STATUS_EXPRESSIONS.items():
        if key == prefix or (prefix.endswith("-") and key.startswith(prefix)):
            return expression
    return None


def display_state_summary(store: StateStore):
    """Show every record in the state directory with the identifier it yields."""
    table = Table(title=f"Installation {store.tag}", border_style="cyan")
    table.add_column("Record", style="dim")
    table.add_column("Identifier", style="green")

    for key in store.keys():
        expression = _status_expression(key)
        if not store.usable(key):
            table.add_row(key, "[red]empty[/red]")
        elif expression:
            value = lookup(store.read(key), expression)
            table.add_row(key, str(value) if value else "[red]missing[/red]")
        else:
            table.add_row(key, "[dim]recorded[/dim]")

    console.print(table)
    console.print(f"[dim]State directory: {store.state_dir}[/dim]")


# ─────────────────────────────────────────────────────────────────────────────
# MAIN
# ─────────────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TKG AWS Installer")
    parser.add_argument("--profile", help="AWS profile to use instead of access keys")
    parser.add_argument("--region", help="AWS region")
    parser.add_argument("--tag", help="Unique tag for this installation")
    parser.add_argument("--state-dir", help="Installation state directory")
    parser.add_argument("--network-only", action="store_true",
                        help="Only create the network and the jumpbox")
    parser.add_argument("--status", action="store_true", help="Show recorded resources and exit")
    parser.add_argument("--poll-interval", type=float, help="Seconds between readiness polls")
    parser.add_argument("--wait-timeout", type=float, help="Seconds before a readiness wait gives up")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    console.print(Panel.fit(
        "[bold cyan]TKG AWS Installer[/bold cyan]\n[dim]Network, jumpbox and TKG installer bootstrap[/dim]",
        border_style="cyan",
    ))
    console.print()

    try:
        if args.status:
            config = InstallConfig()
            resolve_location(config, args)
            display_state_summary(StateStore.attach(config.state_dir, expected_tag=config.tag))
            return

        config = load_install_config(args)

        if not args.network_only:
            config.check_installer_files()

        # Tag check happens before any AWS call
        store = StateStore.open(config.state_dir, config.tag)
        success(f"State directory: {store.state_dir}")

        ctx = InstallContext(config=config, store=store, session=get_aws_session(config))
        Orchestrator(ctx).run(network_only=args.network_only)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Run again to resume.[/yellow]")
        sys.exit(1)
    except NoCredentialsError:
        error("No AWS credentials found")
        sys.exit(1)
    except FatalError as e:
        error(*(f"ERROR: {line}" for line in e.lines))
        sys.exit(1)
    except ClientError as e:
        error(f"AWS call failed: {e}")
        err_console.print(RESUME_HINT)
        sys.exit(1)
    except BotoCoreError as e:
        error(f"AWS request failed: {e}")
        err_console.print(RESUME_HINT)
        sys.exit(1)
    except subprocess.CalledProcessError as e:
        error(f"Jumpbox command failed: {e}")
        err_console.print(RESUME_HINT)
        sys.exit(1)

    console.print(Panel("[bold green]✅ Done[/bold green]", border_style="green"))


if __name__ == "__main__":
    main()
