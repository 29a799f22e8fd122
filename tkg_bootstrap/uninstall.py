#!/usr/bin/env python3
"""
TKG AWS Cleanup

Deletes every resource recorded in an installation state directory, in
dependency-safe order. Deletes are best-effort; re-run until no errors are
reported.
"""

import argparse
import sys

import questionary
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from rich.panel import Panel

from .config import InstallConfig, find_or_prompt, get_aws_session, require_value, resolve_credentials
from .console import PROMPT_STYLE, FatalError, banner, console, error
from .state import StateStore
from .teardown import TeardownDriver, teardown_order


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TKG AWS Cleanup")
    parser.add_argument("--profile", help="AWS profile to use instead of access keys")
    parser.add_argument("--region", help="AWS region")
    parser.add_argument("--state-dir", help="Installation state directory to clean up")
    parser.add_argument("--force", action="store_true", help="Skip confirmation")
    return parser


def confirm_teardown(store: StateStore) -> bool:
    """The operator has to retype the installation tag."""
    console.print("\n[bold red]WARNING: This will PERMANENTLY DELETE the resources recorded in:[/bold red]")
    console.print(f"  {store.state_dir}")
    console.print(f"[dim]Deletion order: {', '.join(teardown_order())}[/dim]")
    console.print()

    answer = questionary.text(
        f"To confirm, please enter the installation tag ({store.tag}):",
        style=PROMPT_STYLE,
    ).ask()
    if answer is None:
        return False
    if answer.strip() != store.tag:
        error(f"Mismatch! You entered '{answer}' but the state directory belongs to '{store.tag}'.")
        return False
    return True


def main(argv=None):
    args = build_parser().parse_args(argv)

    console.print(Panel.fit(
        "[bold red]TKG AWS Cleanup[/bold red]\n[dim]Removes resources created by tkg-install[/dim]",
        border_style="red",
    ))
    console.print()

    try:
        config = InstallConfig()
        resolve_credentials(config, args)
        state_dir = find_or_prompt("TKG_INSTALL_STATE_DIR", "Installation state directory",
                                   override=args.state_dir)
        require_value(TKG_INSTALL_STATE_DIR=state_dir)

        store = StateStore.attach(state_dir)
        config.tag = store.tag
        config.state_dir = store.state_dir

        if not args.force and not confirm_teardown(store):
            console.print("[yellow]Cancelled[/yellow]")
            return

        ec2 = get_aws_session(config).client("ec2")
        report = TeardownDriver(store, ec2).run()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Run again to continue cleanup.[/yellow]")
        sys.exit(1)
    except NoCredentialsError:
        error("No AWS credentials found")
        sys.exit(1)
    except FatalError as e:
        error(*(f"ERROR: {line}" for line in e.lines))
        sys.exit(1)
    except ClientError as e:
        error(f"AWS call failed: {e}")
        sys.exit(1)
    except BotoCoreError as e:
        error(f"AWS request failed: {e}")
        sys.exit(1)

    banner("Completed", f"Remove files from {store.state_dir} if no longer needed",
           style="green" if report.ok else "yellow")
    if not report.ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
