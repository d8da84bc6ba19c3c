"""Ansible adapter for the remote configuration step."""

import os
import sys
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

import structlog

from hostdeploy.core.exceptions import CommandError, ConfigFailedError
from hostdeploy.utils.process import CommandResult, run_command

logger = structlog.get_logger()

# Inherited from the orchestrator so the tool can start; nothing else leaks through.
ESSENTIAL_KEYS = ("PATH", "HOME")


class AnsibleApplier:
    """Runs the playbook that installs and starts the application."""

    def __init__(
        self,
        inventory: Path,
        *,
        playbook: str = "playbook.yml",
        binary: str = "ansible-playbook",
        timeout: float = 1800.0,
        base_env: Optional[Mapping[str, str]] = None,
        runner: Callable[..., CommandResult] = run_command,
    ):
        self.inventory = inventory
        self.playbook = playbook
        self.binary = binary
        self.timeout = timeout
        self.base_env = base_env
        self._run = runner

    def build_env(self, env: Mapping[str, str]) -> Dict[str, str]:
        source = os.environ if self.base_env is None else self.base_env
        child_env = {key: source[key] for key in ESSENTIAL_KEYS if key in source}
        # Freshly provisioned hosts are never in known_hosts.
        child_env["ANSIBLE_HOST_KEY_CHECKING"] = "False"
        child_env.update(env)
        return child_env

    def run(self, working_dir: Path, env: Mapping[str, str]) -> None:
        """Converge the host; raises ConfigFailedError on any failure."""
        args = [self.binary, "-i", str(self.inventory), self.playbook]
        logger.info("Running configuration playbook", playbook=self.playbook, inventory=str(self.inventory))
        try:
            result = self._run(args, cwd=working_dir, env=self.build_env(env), timeout=self.timeout)
        except CommandError as e:
            if e.output:
                sys.stdout.write(e.output)
            raise ConfigFailedError(f"Configuration step failed: {e}", exit_code=e.exit_code) from e

        if result.output:
            sys.stdout.write(result.output)
            sys.stdout.flush()
        if not result.ok:
            raise ConfigFailedError(
                f"Configuration step exited with code {result.returncode}",
                exit_code=result.returncode,
            )
        logger.info("Configuration applied ✓")
