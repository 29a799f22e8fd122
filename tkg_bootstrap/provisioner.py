"""
Idempotent create-or-reuse of AWS resources.
"""

from contextlib import contextmanager
from typing import Any, Callable

from botocore.exceptions import ClientError

from .console import message, show_call, success
from .state import StateStore

# Provider errors that only mean "this was already done"
ROUTE_ALREADY_EXISTS = "RouteAlreadyExists"
DUPLICATE_PERMISSION = "InvalidPermission.Duplicate"
ALREADY_ASSOCIATED = "Resource.AlreadyAssociated"


def error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


@contextmanager
def tolerate(*codes: str):
    """Swallow ClientErrors whose code is listed; re-raise everything else."""
    try:
        yield
    except ClientError as e:
        code = error_code(e)
        if code not in codes:
            raise
        message(f"Ignoring {code}: resource already in place")


def name_tags(resource_type: str, name: str) -> list[dict]:
    return [{"ResourceType": resource_type, "Tags": [{"Key": "Name", "Value": name}]}]


class Provisioner:
    """Runs creation calls at most once per state record."""

    def __init__(self, store: StateStore, ec2):
        self.store = store
        self.ec2 = ec2

    def ensure(self, key: str, create: Callable[[], Any], expression: str,
               label: str = "") -> str:
        """Return the identifier for ``key``, creating the resource if needed.

        A usable record skips ``create`` entirely. Otherwise ``create`` runs
        once and its response is persisted before the identifier is read, so
        a failed call leaves no record and the next run retries just this step.
        """
        label = label or key
        if self.store.usable(key):
            message(f"Using previously created {label}")
        else:
            show_call(f"Creating {label}")
            self.store.write(key, create())

        resource_id = self.store.find_id(key, expression)
        success(f"{label}: [cyan]{resource_id}[/cyan]")
        return resource_id

    def tag_resource(self, resource_id: str, name: str):
        self.ec2.create_tags(Resources=[resource_id], Tags=[{"Key": "Name", "Value": name}])
