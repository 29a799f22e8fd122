"""
Installs the Tanzu tooling on the jumpbox and launches the TKG installer.
"""

import hashlib
from pathlib import Path

from rich.panel import Panel

from .config import InstallContext
from .console import banner, console, fatal, message, show_call, success
from .jumpbox import Jumpbox
from .remote import INSTALLER_PORT, REMOTE_HOME

UPDATE_SCRIPT = "update-jumpbox.sh"
INSTALL_SCRIPT = "install-tanzu-software.sh"
REMOTE_BUNDLE = "tanzu-cli-bundle-linux-amd64.tar"

IAM_SUFFIX = ".tkg.cloud.vmware.com"
IAM_EXPECTED = (
    "control-plane.tkg.cloud.vmware.com",
    "controllers.tkg.cloud.vmware.com",
    "nodes.tkg.cloud.vmware.com",
)
IAM_STACK_NAME = "tkg-cloud-vmware-com"

UPDATE_SCRIPT_BODY = """\
#!/bin/sh

set -x

sudo apt update -y
sudo apt install -y docker.io screen
sudo adduser ubuntu docker
sudo reboot
"""

INSTALL_SCRIPT_BODY = """\
#!/bin/sh

set -x

# Latest uploaded kubectl wins
kubectl_gzip=$(ls -1tr kubectl-linux-*.gz | tail -n 1)
kubectl_base=${kubectl_gzip%.gz}
gunzip -f $kubectl_gzip
sudo install $kubectl_base /usr/local/bin/kubectl

# kind helps debug early bootstrap failures
curl -Lo ./kind https://kind.sigs.k8s.io/dl/v0.12.0/kind-linux-amd64
chmod +x ./kind
sudo install kind /usr/local/bin/kind

rm -rf ./cli
tar -xvf tanzu-cli-bundle-linux-amd64.tar
cd cli/
sudo install core/v1.*/tanzu-core-linux_amd64 /usr/local/bin/tanzu
gunzip *.gz
sudo install imgpkg-linux-amd64-* /usr/local/bin/imgpkg
sudo install kapp-linux-amd64-* /usr/local/bin/kapp
sudo install kbld-linux-amd64-* /usr/local/bin/kbld
sudo install vendir-linux-amd64-* /usr/local/bin/vendir
sudo install ytt-linux-amd64-* /usr/local/bin/ytt
cd ..
tanzu plugin install --local cli all

# Internal control plane load balancer
tanzu config init
cat <<EOF > ~/.config/tanzu/tkg/providers/ytt/03_customizations/internal_lb.yaml
#@ load("@ytt:overlay", "overlay")
#@ load("@ytt:data", "data")

#@overlay/match by=overlay.subset({"kind":"AWSCluster"})
---
apiVersion: infrastructure.cluster.x-k8s.io/v1alpha3
kind: AWSCluster
spec:
#@overlay/match missing_ok=True
  controlPlaneLoadBalancer:
#@overlay/match missing_ok=True
    scheme: "internal"

EOF
"""


def file_sha1(path: Path) -> str:
    digest = hashlib.sha1()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


# ─────────────────────────────────────────────────────────────────────────────
# JUMPBOX SOFTWARE
# ─────────────────────────────────────────────────────────────────────────────

def update_jumpbox(ctx: InstallContext, jumpbox: Jumpbox):
    banner("Updating and installing base software on jumpbox")
    script = ctx.store.write_text(UPDATE_SCRIPT, UPDATE_SCRIPT_BODY)
    jumpbox.remote.copy(script)

    message("Executing update script (system will reboot)")
    # The reboot drops the connection, so the exit status means nothing here
    jumpbox.remote.run("/bin/sh", f"{REMOTE_HOME}/{UPDATE_SCRIPT}", check=False)

    jumpbox.wait_until_ready()


def install_tanzu_software(ctx: InstallContext, jumpbox: Jumpbox):
    banner("Installing Tanzu software on jumpbox")
    remote = jumpbox.remote
    script = ctx.store.write_text(INSTALL_SCRIPT, INSTALL_SCRIPT_BODY)

    message("Copying files to jumpbox")
    remote.copy(script)
    remote.copy(ctx.config.kubectl)

    # The CLI bundle is large; skip the copy when the remote one is identical
    local_sha = file_sha1(Path(ctx.config.cli_bundle))
    if local_sha == remote.remote_sha1(f"{REMOTE_HOME}/{REMOTE_BUNDLE}"):
        success("Tanzu CLI bundle already up to date - not copied")
    else:
        remote.copy(ctx.config.cli_bundle, REMOTE_BUNDLE)

    message("Running install script")
    remote.run("/bin/sh", f"{REMOTE_HOME}/{INSTALL_SCRIPT}")


# ─────────────────────────────────────────────────────────────────────────────
# IAM
# ─────────────────────────────────────────────────────────────────────────────

def _tkg_names(client, operation: str, result_key: str, name_key: str, **kwargs) -> list[str]:
    names = []
    for page in client.get_paginator(operation).paginate(**kwargs):
        names.extend(item[name_key] for item in page[result_key])
    return sorted(n for n in names if n.endswith(IAM_SUFFIX))


def check_iam_resources(kind: str, present: list[str]):
    missing = [name for name in IAM_EXPECTED if name not in present]
    if missing:
        fatal(
            f"Missing some IAM resources of type {kind}",
            f"Expected: {' '.join(IAM_EXPECTED)}",
            f"Found: {' '.join(present)}",
        )


def ensure_iam_stack(ctx: InstallContext) -> bool:
    """Create the TKG IAM stack unless its resources already exist.

    Returns True when the stack was created.
    """
    banner("Checking for IAM resources")
    iam = ctx.client("iam")
    found = {
        "instance profile": _tkg_names(iam, "list_instance_profiles", "InstanceProfiles",
                                       "InstanceProfileName"),
        "policy": _tkg_names(iam, "list_policies", "Policies", "PolicyName", Scope="Local"),
        "role": _tkg_names(iam, "list_roles", "Roles", "RoleName"),
    }

    if any(found.values()):
        for kind, names in found.items():
            check_iam_resources(kind, names)
        success("All necessary IAM resources already exist")
        return False

    template = Path(ctx.config.cloudformation_template)
    if not template.is_file():
        fatal(f"Can't find or read CloudFormation template {template}")

    show_call(f"Creating {IAM_STACK_NAME} CloudFormation stack")
    ctx.client("cloudformation").create_stack(
        StackName=IAM_STACK_NAME,
        TemplateBody=template.read_text(),
        Capabilities=["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"],
    )
    return True


# ─────────────────────────────────────────────────────────────────────────────
# INSTALLER
# ─────────────────────────────────────────────────────────────────────────────

def connection_summary(ctx: InstallContext, credentials: dict, vpc_id: str) -> str:
    return "\n".join([
        f"The TKG installer will be running on [link]http://localhost:{INSTALLER_PORT}[/link].",
        "",
        "[bold yellow]NOTE[/bold yellow]: temporary session credentials have been generated and are",
        "shown below. These are NOT the values you supplied to this tool.",
        "",
        "The following information will be needed during the installation:",
        "",
        f"  * Access Key ID: {credentials['AccessKeyId']}",
        f"  * Secret Access Key: {credentials['SecretAccessKey']}",
        f"  * Session Token: {credentials['SessionToken']}",
        f"  * Region: {ctx.config.region}",
        f"  * SSH key name: {ctx.config.key_name}",
        f"  * VPC ID: {vpc_id}",
    ])


def start_installer(ctx: InstallContext, jumpbox: Jumpbox):
    banner("Starting TKG installer")
    response = ctx.client("sts").get_session_token()
    credentials = response.get("Credentials")
    if not credentials:
        fatal("Could not obtain temporary session credentials")

    vpc_id = ctx.store.find_id("vpc", "Vpc.VpcId")
    console.print(Panel(connection_summary(ctx, credentials, vpc_id), border_style="green"))

    jumpbox.remote.tunnel("tanzu", "management-cluster", "create", "--ui")
