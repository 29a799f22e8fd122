"""
TKG AWS Bootstrap

Provisions the AWS network and jumpbox needed by the Tanzu Kubernetes Grid
installer, then bootstraps the jumpbox over SSH and launches the installer.

Every created resource is remembered in a per-installation state directory,
so re-running with the same tag resumes where the previous run stopped.
"""

__version__ = "1.0.0"
