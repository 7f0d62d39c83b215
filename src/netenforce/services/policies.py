"""Apply the identity policy files dropped in the policy directory."""

from __future__ import annotations

import asyncio
import logging
import pathlib
import time
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer

from netenforce import config
from netenforce.identity import KINDS
from netenforce.identity.base import dnsmasq_config_prefix
from netenforce.models import IdentityPolicyFile, OperationReport

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from netenforce.identity import IdentityRegistry

logger = logging.getLogger("netenforce")

# Policy files loaded so far, a deleted file can't be read to find its identity.
LOADED_FILES: dict[pathlib.Path, tuple[str, str]] = {}


def policy_file_path(namespace: str, uid: str) -> pathlib.Path:
    return config.POLICY_DIR.joinpath(f"{dnsmasq_config_prefix(namespace, uid)}.yaml")


def load_policy_file(path: pathlib.Path) -> IdentityPolicyFile | None:
    """Load and validate a policy file. Invalid files are logged and skipped."""
    try:
        with path.open(encoding="utf-8") as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Policy file %s disappeared. Skipping.", path)
        return None
    except yaml.YAMLError:
        logger.exception("Invalid YAML found in %s. Skipping.", path)
        return None
    try:
        return IdentityPolicyFile(**data)
    except (TypeError, ValidationError):
        logger.exception("Invalid policy file %s. Skipping.", path)
        return None


def write_policy_file(policy_file: IdentityPolicyFile) -> pathlib.Path:
    path = policy_file_path(policy_file.namespace, policy_file.uid)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        f.write(
            yaml.safe_dump(
                policy_file.model_dump(mode="json"),
                explicit_start=True,
                explicit_end=True,
                sort_keys=False,
            ),
        )
    return path


async def manage_policy_file(
    registry: IdentityRegistry,
    path: pathlib.Path,
) -> OperationReport | None:
    """Bring an identity in line with its policy file.

    The enforcement environment and the addresses are updated right away,
    policy fields that differ from the persisted policy are set and applied.
    """
    policy_file = await asyncio.to_thread(load_policy_file, path)
    if policy_file is None:
        return None
    kind = KINDS.get(policy_file.namespace)
    if kind is None:
        logger.error(
            "Unknown identity namespace '%s' in %s. Skipping.",
            policy_file.namespace,
            path,
        )
        return None

    LOADED_FILES[path] = (policy_file.namespace, policy_file.uid)
    identity = registry.get_or_create(kind, policy_file.uid)
    report = OperationReport(operation=f"policy file {path.name}")
    await identity.load_policy()
    report.add(await identity.create_env())
    report.add(await identity.update_ips(policy_file.ips))

    changed = False
    for name, value in policy_file.policy.items():
        if identity.policy.get(name) == value:
            continue
        logger.info("Policy '%s' of %s set to %s", name, identity.guid, value)
        await identity.set_policy(name, value)
        changed = True
    if changed:
        identity.schedule_apply_policy()
    return report


async def delete_policy_file(
    registry: IdentityRegistry,
    path: pathlib.Path,
) -> OperationReport | None:
    """Tear down the environment of the identity a removed file described."""
    key = LOADED_FILES.pop(path, None)
    if key is None:
        logger.warning("Policy file %s was never loaded. Skipping.", path)
        return None
    identity = registry.get(*key)
    if identity is None:
        return None
    logger.info("Removing enforcement environment of %s.", identity.guid)
    return await identity.destroy_env()


def observe_policies(
    registry: IdentityRegistry,
    loop: asyncio.AbstractEventLoop,
) -> BaseObserver:
    """Create the observer for the identity policy files."""

    def _submit(coro: Any) -> None:  # noqa: ANN401
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            future.result()
        except Exception:
            logger.exception("Failed to process policy file event")

    # Define what should happen when policy files are created, modified or deleted.
    class PolicyHandler(PatternMatchingEventHandler):
        """Handler for the event monitoring."""

        def on_created(self, event: FileSystemEvent) -> None:
            logger.info("File %s: %s", event.event_type, event.src_path)
            time.sleep(0.1)
            _submit(manage_policy_file(registry, pathlib.Path(str(event.src_path))))

        def on_modified(self, event: FileSystemEvent) -> None:
            logger.info("File %s: %s", event.event_type, event.src_path)
            time.sleep(0.1)
            _submit(manage_policy_file(registry, pathlib.Path(str(event.src_path))))

        def on_deleted(self, event: FileSystemEvent) -> None:
            logger.info("File %s: %s", event.event_type, event.src_path)
            _submit(delete_policy_file(registry, pathlib.Path(str(event.src_path))))

    # Create the observer object. This doesn't start the handler.
    observer: BaseObserver = Observer()

    # Configure the event handler that watches directories.
    # This doesn't start the handler.
    observer.schedule(
        event_handler=PolicyHandler(patterns=["*.yaml"], ignore_directories=True),
        path=config.POLICY_DIR,
        recursive=False,
    )
    # The handler should exit on main thread close
    observer.daemon = True

    return observer
