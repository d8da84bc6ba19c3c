"""Terraform adapter for the infrastructure driver contract."""

import json
import os
import shutil
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, Optional

import structlog

from hostdeploy.core.exceptions import ApplyFailedError, CommandError, DestroyFailedError
from hostdeploy.deploy.models import InfraOutputs, PlanHandle, ResourceSet
from hostdeploy.utils.process import CommandResult, run_command

logger = structlog.get_logger()

PLAN_FILE = "tfplan"

# Generated by init/plan; removed on every clean slate.
LOCAL_ARTIFACTS = (PLAN_FILE, "terraform.tfstate.backup", ".terraform.lock.hcl")
LOCAL_ARTIFACT_DIRS = (".terraform/modules",)

_NOT_IN_STATE_MARKERS = ("No matching objects found", "Invalid target address")


class TerraformDriver:
    """Runs terraform against the shared remote state in ``working_dir``.

    Input variables are handed to terraform as ``TF_VAR_*`` entries of the
    child environment; the orchestrator's own environment is never modified.
    """

    def __init__(
        self,
        working_dir: Path,
        *,
        binary: str = "terraform",
        variables: Optional[Mapping[str, str]] = None,
        command_timeout: float = 120.0,
        prepare_timeout: float = 600.0,
        base_env: Optional[Mapping[str, str]] = None,
        runner: Callable[..., CommandResult] = run_command,
    ):
        self.working_dir = working_dir
        self.binary = binary
        self.variables = dict(variables or {})
        self.command_timeout = command_timeout
        self.prepare_timeout = prepare_timeout
        self.base_env = base_env
        self._run = runner

    @property
    def env(self) -> Dict[str, str]:
        env = dict(os.environ if self.base_env is None else self.base_env)
        env["TF_IN_AUTOMATION"] = "1"
        for name, value in self.variables.items():
            env[f"TF_VAR_{name}"] = value
        return env

    @property
    def plan_path(self) -> Path:
        return self.working_dir / PLAN_FILE

    def _command(self, *args: str) -> list:
        return [self.binary, *args]

    def _run_streamed(self, *args: str, timeout: Optional[float] = None) -> CommandResult:
        return self._run(self._command(*args), cwd=self.working_dir, env=self.env, timeout=timeout, stream=True)

    def _run_bounded(self, *args: str) -> CommandResult:
        return self._run(self._command(*args), cwd=self.working_dir, env=self.env, timeout=self.command_timeout)

    def ensure_initialized(self) -> bool:
        """Quiet init used before inspecting state; failures are reported, not raised."""
        try:
            result = self._run_bounded("init", "-input=false")
        except CommandError as e:
            logger.warning("terraform init failed", error=str(e))
            return False
        if not result.ok:
            logger.debug("terraform init failed", exit_code=result.returncode)
        return result.ok

    def _prepare(self, step: str, *args: str) -> None:
        """Run a bounded preparation step: init, validate or plan."""
        try:
            result = self._run_streamed(step, *args, timeout=self.prepare_timeout)
        except CommandError as e:
            raise ApplyFailedError(f"terraform {step} failed: {e}", output=e.output, exit_code=e.exit_code) from e
        if not result.ok:
            raise ApplyFailedError(f"terraform {step} failed", output=result.output, exit_code=result.returncode)

    def init(self) -> None:
        self._prepare("init", "-input=false")

    def validate(self) -> None:
        self._prepare("validate")

    def plan(self) -> PlanHandle:
        self._prepare("plan", "-input=false", f"-out={PLAN_FILE}")
        return PlanHandle(path=self.plan_path)

    def apply(self, handle: PlanHandle) -> InfraOutputs:
        result = self._run_streamed("apply", "-input=false", "-auto-approve", str(handle.path))
        if not result.ok:
            raise ApplyFailedError("terraform apply failed", output=result.output, exit_code=result.returncode)
        return self.outputs()

    def outputs(self) -> InfraOutputs:
        """Read ``terraform output``; missing or unreadable outputs come back empty."""
        try:
            result = self._run_bounded("output", "-json")
        except CommandError as e:
            logger.warning("Could not read terraform outputs", error=str(e))
            return InfraOutputs()
        if not result.ok:
            logger.warning("Could not read terraform outputs", exit_code=result.returncode)
            return InfraOutputs()

        try:
            raw = json.loads(result.output or "{}")
        except json.JSONDecodeError:
            logger.warning("terraform output was not JSON")
            return InfraOutputs()

        values = {
            name: entry.get("value") if isinstance(entry, dict) else entry
            for name, entry in raw.items()
        }
        return InfraOutputs(
            instance_public_ip=values.get("instance_public_ip"),
            application_url=values.get("application_url"),
        )

    def destroy(self) -> None:
        result = self._run_streamed("destroy", "-input=false", "-auto-approve")
        if not result.ok:
            raise DestroyFailedError("terraform destroy failed", output=result.output, exit_code=result.returncode)

    def list_resources(self) -> ResourceSet:
        try:
            result = self._run_bounded("state", "list")
        except CommandError as e:
            logger.warning("Unable to list state", error=str(e))
            return ResourceSet()
        if not result.ok:
            logger.debug("terraform state list failed", exit_code=result.returncode)
            return ResourceSet()
        addresses = tuple(line.strip() for line in result.output.splitlines() if line.strip())
        return ResourceSet(addresses=addresses)

    def remove_from_state(self, address: str) -> bool:
        """Forget ``address`` without touching the real resource.

        Returns False when the address is not tracked or removal failed.
        """
        try:
            result = self._run_bounded("state", "rm", address)
        except CommandError as e:
            logger.warning("Failed to remove from state", address=address, error=str(e))
            return False
        if result.ok:
            logger.info("Removed from state", address=address)
            return True
        if any(marker in result.output for marker in _NOT_IN_STATE_MARKERS):
            logger.debug("Not in state", address=address)
        else:
            logger.warning("Failed to remove from state", address=address, exit_code=result.returncode)
        return False

    def clean_local_artifacts(self, extra_paths: Iterable[Path] = ()) -> None:
        for name in LOCAL_ARTIFACTS:
            (self.working_dir / name).unlink(missing_ok=True)
        for name in LOCAL_ARTIFACT_DIRS:
            shutil.rmtree(self.working_dir / name, ignore_errors=True)
        for path in extra_paths:
            Path(path).unlink(missing_ok=True)
