"""
SSH / SCP access to the jumpbox.
"""

import subprocess
from pathlib import Path
from typing import Callable

from .console import show_call

REMOTE_USER = "ubuntu"
REMOTE_HOME = f"/home/{REMOTE_USER}"
READY_TOKEN = "up-and-running"
INSTALLER_PORT = 8080


class RemoteHost:
    """Runs commands on, and copies files to, a single host.

    ``address`` is a callable so the public IP is only resolved when the
    first command actually needs it.
    """

    def __init__(self, address: Callable[[], str], key_file: Path,
                 user: str = REMOTE_USER, runner=subprocess.run):
        self._address = address
        self.key_file = Path(key_file)
        self.user = user
        self._run = runner

    @property
    def target(self) -> str:
        return f"{self.user}@{self._address()}"

    def _ssh(self, *args: str, options: tuple[str, ...] = ()) -> list[str]:
        return [
            "ssh",
            "-i", str(self.key_file),
            "-o", "StrictHostKeyChecking=accept-new",
            *options,
            self.target,
            *args,
        ]

    def run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a command with output streamed to the terminal."""
        cmd = self._ssh(*args)
        show_call(" ".join(args))
        return self._run(cmd, check=check)

    def capture(self, *args: str) -> subprocess.CompletedProcess:
        return self._run(self._ssh(*args, options=("-o", "BatchMode=yes", "-o", "ConnectTimeout=10")),
                         capture_output=True, text=True)

    def probe(self) -> str:
        """Echo a token back; anything else means the host is not ready."""
        try:
            result = self.capture("echo", READY_TOKEN)
        except OSError:
            return "not-ready"
        if result.returncode == 0 and result.stdout.strip() == READY_TOKEN:
            return READY_TOKEN
        return "not-ready"

    def copy(self, local: Path | str, remote_name: str = "") -> subprocess.CompletedProcess:
        local = Path(local)
        destination = f"{self.target}:{REMOTE_HOME}/{remote_name}"
        show_call(f"scp {local.name} {destination}")
        return self._run(
            ["scp", "-i", str(self.key_file), "-o", "StrictHostKeyChecking=accept-new",
             str(local), destination],
            check=True,
        )

    def remote_sha1(self, remote_path: str) -> str:
        """SHA-1 of a remote file, or '' when it does not exist."""
        result = self.capture("shasum", remote_path)
        if result.returncode != 0 or not result.stdout.strip():
            return ""
        return result.stdout.split()[0]

    def tunnel(self, *args: str, port: int = INSTALLER_PORT) -> subprocess.CompletedProcess:
        """Run an interactive command with ``port`` forwarded to localhost."""
        cmd = self._ssh(*args, options=("-t", "-L", f"{port}:localhost:{port}"))
        show_call(" ".join(args))
        return self._run(cmd, check=False)
