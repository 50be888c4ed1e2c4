"""Provisioning engine: applies a resource graph as a Pulumi stack.

The Automation API drives a local, file-backed workspace under the
configuration directory, so no hosted backend login is needed. Every call
blocks while the engine runs, so it is pushed to a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from pulumi import automation as auto

from mailstack.config import Settings, load_settings
from mailstack.errors import (
    AuthorizationError,
    ConflictError,
    MailstackError,
    NotFoundError,
    ProvisioningError,
)
from mailstack.infrastructure.graph import ResourceGraph
from mailstack.infrastructure.outputs import StackOutputs
from mailstack.infrastructure.program import build_program

logger = logging.getLogger(__name__)

T = TypeVar("T")

STACK_PREFIX = "mailstack"


def stack_id_for(account_id: str, region: str) -> str:
    return f"{STACK_PREFIX}-{account_id}-{region}"


class ProvisioningEngine(Protocol):
    async def apply(self, stack_id: str, graph: ResourceGraph) -> StackOutputs: ...

    async def destroy(self, stack_id: str) -> None: ...

    async def outputs(self, stack_id: str) -> StackOutputs | None: ...


def _noop_program() -> None:
    return None


def _translate(exc: Exception, action: str, stack_id: str) -> MailstackError:
    # Subclasses of CommandError are checked first.
    if isinstance(exc, auto.StackNotFoundError):
        return NotFoundError(f"Stack {stack_id} does not exist", code="stack_not_found")
    if isinstance(exc, auto.ConcurrentUpdateError):
        return ConflictError(
            f"Stack {stack_id} is being updated by another process",
            code="stack_update_in_progress",
            suggestion="Wait for the other operation to finish, then retry",
        )
    message = str(exc)
    if "AccessDenied" in message or "UnauthorizedOperation" in message:
        return AuthorizationError(
            f"{action} on {stack_id} was denied by the cloud provider",
            code="access_denied",
            suggestion="Check that your credentials may manage IAM, SES and related resources",
        )
    detail = message.strip().splitlines()[-1] if message.strip() else repr(exc)
    return ProvisioningError(
        f"{action} on {stack_id} failed: {detail}",
        code="engine_failed",
        suggestion="Run again with --verbose for the full engine output",
    )


class PulumiEngine:
    def __init__(
        self,
        settings: Settings | None = None,
        profile: str | None = None,
        program_factory: Callable[[ResourceGraph], Callable[[], None]] = build_program,
    ) -> None:
        self._settings = settings or load_settings()
        self._profile = profile or self._settings.aws.default_profile
        self._program_factory = program_factory

    @property
    def work_dir(self) -> str:
        return str(self._settings.storage.home_path / "workspace")

    def _options(self, region: str | None = None) -> auto.LocalWorkspaceOptions:
        backend_url = self._settings.pulumi_backend_url()
        if backend_url.startswith("file://"):
            os.makedirs(backend_url[len("file://"):], exist_ok=True)
        os.makedirs(self.work_dir, exist_ok=True)

        env_vars = {
            "PULUMI_CONFIG_PASSPHRASE": self._settings.engine.passphrase,
            "PULUMI_BACKEND_URL": backend_url,
        }
        if region:
            env_vars["AWS_REGION"] = region
        if self._profile:
            env_vars["AWS_PROFILE"] = self._profile
        return auto.LocalWorkspaceOptions(
            work_dir=self.work_dir,
            project_settings=auto.ProjectSettings(
                name=self._settings.engine.project_name,
                runtime="python",
                backend=auto.ProjectBackend(url=backend_url),
            ),
            env_vars=env_vars,
            secrets_provider="passphrase",
        )

    def _select(self, stack_id: str) -> auto.Stack:
        return auto.select_stack(
            stack_name=stack_id,
            project_name=self._settings.engine.project_name,
            program=_noop_program,
            opts=self._options(),
        )

    async def _run(self, action: str, stack_id: str, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except auto.CommandError as exc:
            logger.debug("Engine %s failed for %s: %s", action, stack_id, exc)
            raise _translate(exc, action, stack_id) from exc

    async def apply(self, stack_id: str, graph: ResourceGraph) -> StackOutputs:
        def run() -> dict[str, Any]:
            stack = auto.create_or_select_stack(
                stack_name=stack_id,
                project_name=self._settings.engine.project_name,
                program=self._program_factory(graph),
                opts=self._options(graph.region),
            )
            stack.set_config("aws:region", auto.ConfigValue(value=graph.region))
            if self._profile:
                stack.set_config("aws:profile", auto.ConfigValue(value=self._profile))
            result = stack.up(on_output=logger.debug)
            logger.info(
                "Stack %s updated: %s", stack_id, result.summary.resource_changes or {}
            )
            return {key: output.value for key, output in result.outputs.items()}

        values = await self._run("apply", stack_id, run)
        return StackOutputs.from_engine(values)

    async def destroy(self, stack_id: str) -> None:
        def run() -> None:
            stack = self._select(stack_id)
            stack.destroy(on_output=logger.debug)
            stack.workspace.remove_stack(stack_id)

        await self._run("destroy", stack_id, run)
        logger.info("Stack %s destroyed", stack_id)

    async def outputs(self, stack_id: str) -> StackOutputs | None:
        def run() -> dict[str, Any]:
            stack = self._select(stack_id)
            return {key: output.value for key, output in stack.outputs().items()}

        try:
            values = await self._run("outputs", stack_id, run)
        except NotFoundError:
            return None
        if not values.get("roleArn"):
            return None
        return StackOutputs.from_engine(values)
