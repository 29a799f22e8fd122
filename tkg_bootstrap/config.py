"""
Installation configuration and the context passed to every provisioning step.

Values come from command-line flags first, then the environment, then an
interactive prompt whose default is the documented fallback.
"""

import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable

import boto3
import questionary
from botocore.exceptions import ProfileNotFound

from .console import PROMPT_STYLE, console, fatal
from .state import StateStore

DEFAULT_REGION = "us-east-1"
DEFAULT_VPC_CIDR = "172.16.0.0/16"
DEFAULT_INTERNAL_CIDR = "172.16.0.0/12"
DEFAULT_INSTANCE_TYPE = "t2.medium"
DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_WAIT_TIMEOUT = 1800.0

CLI_BUNDLE_NAME = "tanzu-cli-bundle-linux-amd64.tar"
KUBECTL_PATTERN = "kubectl-linux-*+vmware.*.gz"
CLOUDFORMATION_TEMPLATE = "tkg-cloud-vmware-com.cloudformation.yaml"


# ─────────────────────────────────────────────────────────────────────────────
# PROMPTS
# ─────────────────────────────────────────────────────────────────────────────

def _ask(prompt: str, default: str, secret: bool) -> str | None:
    if secret:
        return questionary.password(f"{prompt}:", style=PROMPT_STYLE).ask()
    return questionary.text(f"{prompt}:", default=default, style=PROMPT_STYLE).ask()


def find_or_prompt(var_name: str, prompt: str, secret: bool = False,
                   default: str = "", override: str | None = None,
                   ask: Callable[[str, str, bool], str | None] = _ask) -> str:
    """Resolve one setting: flag, then environment, then prompt, then default."""
    if override:
        return override

    value = os.environ.get(var_name, "")
    if value:
        shown = "<SECRET>" if secret else value
        console.print(f"[dim]Value for {var_name} found in environment: {shown}[/dim]")
        return value

    console.print(f"[dim]{var_name} not found in environment[/dim]")
    answer = ask(prompt, default, secret)
    if answer is None:
        # Ctrl-C inside questionary returns None
        raise KeyboardInterrupt
    return answer.strip() or default


def require_value(**values):
    missing = [name for name, value in values.items() if not str(value or "").strip()]
    if missing:
        fatal(f"Value for {', '.join(missing)} is missing")


def discover_download(pattern: str) -> str:
    """First file matching ``pattern`` under the current directory or ~/Downloads."""
    for base in (Path.cwd(), Path.home() / "Downloads"):
        if not base.is_dir():
            continue
        for match in sorted(base.rglob(pattern)):
            return str(match)
    return ""


# ─────────────────────────────────────────────────────────────────────────────
# CONFIG
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class InstallConfig:
    """Settings for one installation."""
    region: str = DEFAULT_REGION
    tag: str = ""
    state_dir: Path = Path(".")
    access_key_id: str = ""
    secret_access_key: str = ""
    profile: str | None = None

    cli_bundle: str = ""
    kubectl: str = ""
    cloudformation_template: str = CLOUDFORMATION_TEMPLATE
    jumpbox_ami: str = ""

    vpc_cidr: str = DEFAULT_VPC_CIDR
    internal_cidr: str = DEFAULT_INTERNAL_CIDR
    instance_type: str = DEFAULT_INSTANCE_TYPE
    poll_interval: float = DEFAULT_POLL_INTERVAL
    wait_timeout: float = DEFAULT_WAIT_TIMEOUT

    @property
    def key_name(self) -> str:
        return f"tkg-kp-{self.tag}"

    def check_installer_files(self):
        """The Tanzu downloads must be readable before anything is created."""
        for label, value in (("Tanzu CLI bundle tar file", self.cli_bundle),
                             ("kubectl gzip file", self.kubectl)):
            path = Path(value) if value else None
            if not path or not path.is_file() or not os.access(path, os.R_OK):
                fatal(f"Can't find or read {label} {value}")


def resolve_credentials(config: InstallConfig, args):
    """AWS credentials and region; a named profile replaces the key prompts."""
    config.profile = getattr(args, "profile", None)
    if not config.profile:
        config.access_key_id = find_or_prompt("AWS_ACCESS_KEY_ID", "AWS Access Key ID", secret=True)
        config.secret_access_key = find_or_prompt(
            "AWS_SECRET_ACCESS_KEY", "AWS Secret Access Key", secret=True)
        require_value(AWS_ACCESS_KEY_ID=config.access_key_id,
                      AWS_SECRET_ACCESS_KEY=config.secret_access_key)

    config.region = find_or_prompt(
        "AWS_REGION", "Region with at least 3 available AZs",
        default=DEFAULT_REGION, override=getattr(args, "region", None))
    require_value(AWS_REGION=config.region)


def resolve_location(config: InstallConfig, args):
    """Installation tag and the state directory that belongs to it."""
    config.tag = find_or_prompt(
        "TKG_INSTALL_TAG", "Unique tag for this installation",
        default=date.today().strftime("%Y%m%d"), override=getattr(args, "tag", None))
    require_value(TKG_INSTALL_TAG=config.tag)

    state_dir = find_or_prompt(
        "TKG_INSTALL_STATE_DIR", "Installation state directory",
        default=str(Path.cwd() / f"tkg-install-{config.tag}"),
        override=getattr(args, "state_dir", None))
    require_value(TKG_INSTALL_STATE_DIR=state_dir)
    config.state_dir = Path(state_dir)


def load_install_config(args) -> InstallConfig:
    """Build the install configuration from flags, environment and prompts."""
    config = InstallConfig(
        poll_interval=getattr(args, "poll_interval", None) or DEFAULT_POLL_INTERVAL,
        wait_timeout=getattr(args, "wait_timeout", None) or DEFAULT_WAIT_TIMEOUT,
    )
    resolve_credentials(config, args)
    resolve_location(config, args)

    config.jumpbox_ami = os.environ.get("TKG_JUMPBOX_AMI", "")

    if not getattr(args, "network_only", False):
        config.cli_bundle = find_or_prompt(
            "DOWNLOADED_TANZU_CLI_BUNDLE", "Tanzu CLI bundle tar file",
            default=discover_download(CLI_BUNDLE_NAME))
        config.kubectl = find_or_prompt(
            "DOWNLOADED_KUBECTL", "VMware kubectl gzip file",
            default=discover_download(KUBECTL_PATTERN))
        config.cloudformation_template = os.environ.get(
            "TKG_CLOUDFORMATION_TEMPLATE", CLOUDFORMATION_TEMPLATE)

    return config


# ─────────────────────────────────────────────────────────────────────────────
# CONTEXT
# ─────────────────────────────────────────────────────────────────────────────

def get_aws_session(config: InstallConfig) -> boto3.Session:
    try:
        if config.profile:
            return boto3.Session(profile_name=config.profile, region_name=config.region)
        return boto3.Session(
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
        )
    except ProfileNotFound:
        fatal(f"AWS profile '{config.profile}' not found")


@dataclass
class InstallContext:
    """Everything a provisioning step needs, passed explicitly."""
    config: InstallConfig
    store: StateStore
    session: boto3.Session
    _clients: dict = field(default_factory=dict, repr=False)

    @property
    def tag(self) -> str:
        return self.store.tag

    def client(self, service: str):
        if service not in self._clients:
            self._clients[service] = self.session.client(service)
        return self._clients[service]

    @property
    def ec2(self):
        return self.client("ec2")
