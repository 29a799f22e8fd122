"""
Fixed-interval polling with a deadline and cooperative cancellation.
"""

import threading
import time
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .console import FatalError, console

AVAILABLE = "available"
PENDING = "pending"


class WaitTimeout(FatalError):
    pass


class WaitCancelled(FatalError):
    pass


def poll_until(
    probe: Callable[[], Any],
    ready: Callable[[Any], bool],
    *,
    description: str,
    interval: float = 10.0,
    timeout: float | None = None,
    max_attempts: int | None = None,
    cancel: threading.Event | None = None,
    sleep: Callable[[float], object] | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep_first: bool = False,
    show: Callable[[Any], str] = str,
) -> Any:
    """Call ``probe`` every ``interval`` seconds until ``ready`` accepts its result.

    Sleeps exactly ``interval`` between polls (before the first one too when
    ``sleep_first``). Gives up with WaitTimeout once ``max_attempts`` polls
    have been made or ``timeout`` seconds have passed, and with WaitCancelled
    as soon as ``cancel`` is set.
    """
    if sleep is None:
        # Event.wait returns as soon as cancel is set
        sleep = cancel.wait if cancel is not None else time.sleep
    deadline = clock() + timeout if timeout is not None else None
    attempts = 0

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(description, total=None)

        while True:
            if attempts or sleep_first:
                sleep(interval)
            if cancel is not None and cancel.is_set():
                raise WaitCancelled(f"{description}: cancelled")

            result = probe()
            attempts += 1
            if ready(result):
                return result

            progress.update(task, description=f"{description} (currently {show(result)})")

            if max_attempts is not None and attempts >= max_attempts:
                raise WaitTimeout(f"{description}: still {show(result)} after {attempts} attempts")
            if deadline is not None and clock() + interval > deadline:
                raise WaitTimeout(f"{description}: still {show(result)} after {timeout:.0f}s")


def transit_gateway_state(ec2, tgw_id: str) -> str:
    """Current state string; a failed describe is reported as still pending."""
    try:
        response = ec2.describe_transit_gateways(TransitGatewayIds=[tgw_id])
    except (ClientError, BotoCoreError):
        return PENDING
    gateways = response.get("TransitGateways", [])
    return gateways[0].get("State", PENDING) if gateways else PENDING


def wait_for_transit_gateway(ec2, tgw_id: str, **kwargs) -> str:
    return poll_until(
        lambda: transit_gateway_state(ec2, tgw_id),
        lambda state: state == AVAILABLE,
        description=f"Waiting for transit gateway {tgw_id} to become available",
        **kwargs,
    )
