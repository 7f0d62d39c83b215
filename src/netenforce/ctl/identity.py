"""Manage identity policies."""

from __future__ import annotations

import json
from typing import Any

import typer
import yaml
from pydantic import ValidationError
from rich import print
from typing_extensions import Annotated

from netenforce import config
from netenforce.ctl import helpers
from netenforce.identity.base import address_set_key, policy_key
from netenforce.models import IdentityPolicyFile
from netenforce.services import policies
from netenforce.store import JsonStore

app = typer.Typer(no_args_is_help=True)


@app.command()
def show(namespace: str, uid: str) -> None:
    """Show the persisted policy and addresses of an identity."""
    store = JsonStore(config.STATE_PATH)

    async def _collect() -> dict[str, Any]:
        return {
            "namespace": namespace,
            "uid": uid,
            "addresses": sorted(await store.smembers(address_set_key(namespace, uid))),
            "policy": await store.get_json(policy_key(namespace, uid)) or {},
        }

    output = helpers.run(_collect())
    print(yaml.safe_dump(output, explicit_start=True, explicit_end=True))


@app.command(name="set-policy")
def set_policy(
    ctx: typer.Context,
    namespace: str,
    uid: str,
    name: str,
    value: Annotated[str, typer.Argument(help="Policy value as JSON.")],
) -> None:
    """Set a policy field in the identity's policy file."""
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        ctx.fail(f"Invalid JSON value: {e}")

    path = policies.policy_file_path(namespace, uid)
    policy_file = policies.load_policy_file(path) if path.exists() else None
    if policy_file is None:
        try:
            policy_file = IdentityPolicyFile(namespace=namespace, uid=uid)
        except ValidationError as e:
            ctx.fail(str(e))
    policy_file.policy[name] = data
    policies.write_policy_file(policy_file)
    print(f"Policy '{name}' of {namespace}:{uid} written to {path}.")


if __name__ == "__main__":
    app()
