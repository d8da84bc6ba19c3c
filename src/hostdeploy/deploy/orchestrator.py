"""Deployment orchestrator.

Drives one deployment run through its phases::

    precondition check -> backend bootstrap -> existing infrastructure check
    -> clean-slate decision -> init/validate -> lock clear -> plan -> apply
    -> configure -> verify

Every phase failure lands in :meth:`Orchestrator._handle_failure`, which offers
the same destroy-and-clean path as the clean-slate decision. Re-running the
orchestrator re-evaluates existing infrastructure from scratch, so a failed run
is recovered by fixing the cause and running again.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, List, Optional

import boto3
import structlog

from hostdeploy.configure.ansible import AnsibleApplier
from hostdeploy.core.config import DeploymentEnvironment, Settings
from hostdeploy.core.exceptions import (
    BackendUnreachableError,
    ConfigFailedError,
    DestroyFailedError,
    HostDeployError,
    LockOverrideDeclined,
    LockParseError,
    PreconditionError,
)
from hostdeploy.deploy.models import (
    DeploymentRun,
    InfraOutputs,
    ResourceSet,
    RunPhase,
)
from hostdeploy.deploy.unlock import log_lock_details, print_diagnostics
from hostdeploy.infra.inventory import write_inventory
from hostdeploy.infra.terraform import TerraformDriver
from hostdeploy.state.backend import BackendConfig, StateBackend
from hostdeploy.state.lock import LockClient
from hostdeploy.utils.logging import bind_run_context
from hostdeploy.utils.process import which
from hostdeploy.utils.prompt import Confirmer
from hostdeploy.utils.run_metrics import PhaseMetrics
from hostdeploy.verify.probe import probe

logger = structlog.get_logger()

INTERRUPTED_EXIT_CODE = 130


class RunAborted(HostDeployError):
    """Stop the run without offering clean-up; state may not be touched."""
    pass


@dataclass
class Approvals:
    """Answers given up front on the command line instead of at a prompt."""

    clean: bool = False
    force_unlock: bool = False
    cleanup_on_failure: bool = False


def aws_credentials_available() -> bool:
    return boto3.Session().get_credentials() is not None


class Orchestrator:
    """Decides between fresh, reused and clean-slate deployments and runs them."""

    def __init__(
        self,
        settings: Settings,
        environment: DeploymentEnvironment,
        *,
        driver: TerraformDriver,
        applier: AnsibleApplier,
        lock_client: LockClient,
        confirmer: Confirmer,
        approvals: Optional[Approvals] = None,
        backend_factory: Callable[[BackendConfig], StateBackend] = StateBackend,
        prober: Callable = probe,
        sleep: Callable[[float], None] = time.sleep,
        tool_lookup: Callable[[str], Optional[str]] = which,
        credentials_check: Callable[[], bool] = aws_credentials_available,
    ):
        self.settings = settings
        self.environment = environment
        self.driver = driver
        self.applier = applier
        self.lock_client = lock_client
        self.confirmer = confirmer
        self.approvals = approvals or Approvals()
        self.backend_factory = backend_factory
        self.prober = prober
        self.sleep = sleep
        self.tool_lookup = tool_lookup
        self.credentials_check = credentials_check

        self.run_state = DeploymentRun(force_clean=self.approvals.clean)
        self.metrics = PhaseMetrics()
        self.backend_config: Optional[BackendConfig] = None
        self.known_resources = ResourceSet()

    @contextmanager
    def _phase(self, phase: RunPhase):
        self.run_state.advance(phase)
        self.metrics.start_phase(phase.value)
        try:
            yield
        finally:
            self.metrics.end_phase(phase.value)

    def run(self) -> int:
        """Execute one deployment run and return its exit code."""
        bind_run_context(run_id=uuid.uuid4().hex[:12], force_clean=self.approvals.clean)
        try:
            return self._run_phases()
        except KeyboardInterrupt:
            return self._interrupted()

    def _run_phases(self) -> int:
        logger.info("================================================")
        logger.info("Application Deployment")
        logger.info("================================================")

        try:
            with self._phase(RunPhase.PRECONDITION_CHECK):
                self._check_preconditions()
        except PreconditionError as e:
            self.run_state.fail(e.exit_code)
            logger.error(str(e))
            logger.info("Nothing was changed. Fix the above and rerun: hostdeploy deploy")
            return self._finish()

        try:
            with self._phase(RunPhase.BACKEND_BOOTSTRAP):
                self._bootstrap_backend()
            with self._phase(RunPhase.EXISTING_INFRA_CHECK):
                resources = self._check_existing_infrastructure()
            with self._phase(RunPhase.CLEAN_SLATE_DECISION):
                self._decide_clean_slate(resources)
            outputs = self._deploy_infrastructure()
            with self._phase(RunPhase.CONFIGURE):
                self._configure(outputs)
            with self._phase(RunPhase.VERIFY):
                self._verify(outputs)
        except LockOverrideDeclined:
            self.run_state.fail(1)
            logger.error("Cannot proceed with locked state")
            logger.info("Wait for the other run to finish, or release the lock with: hostdeploy unlock")
            return self._finish()
        except RunAborted as e:
            self.run_state.fail(e.exit_code)
            logger.error(str(e))
            return self._finish()
        except HostDeployError as e:
            return self._handle_failure(e, e.exit_code)
        except Exception as e:
            logger.exception("Unexpected error during deployment")
            return self._handle_failure(e, 1)

        self.run_state.advance(RunPhase.DONE)
        logger.info("================================================")
        logger.info("Deployment completed successfully! 🚀")
        logger.info("================================================")
        return self._finish()

    def _interrupted(self) -> int:
        if self.run_state.phase == RunPhase.FAILED:
            # Interrupted inside the failure handler; keep the failed phase
            self.run_state.exit_code = INTERRUPTED_EXIT_CODE
        else:
            self.run_state.fail(INTERRUPTED_EXIT_CODE)
        logger.warning("Interrupted; the state lock may still be held")
        logger.info("Check and release it with: hostdeploy unlock")
        return self._finish()

    def _finish(self) -> int:
        self.metrics.finish()
        logger.info(
            "Run finished",
            phase=self.run_state.phase.value,
            exit_code=self.run_state.exit_code,
            **self.metrics.to_dict(),
        )
        if self.settings.metrics_textfile:
            try:
                self.metrics.write_textfile(self.settings.metrics_textfile, self.run_state.exit_code)
            except OSError as e:
                logger.warning("Could not write metrics textfile", path=str(self.settings.metrics_textfile), error=str(e))
        return self.run_state.exit_code

    def _check_preconditions(self) -> None:
        logger.info("Checking prerequisites...", step=True)
        errors: List[str] = []

        tools = [self.settings.terraform_binary, self.settings.ansible_binary, "git"]
        missing_tools = [tool for tool in tools if self.tool_lookup(tool) is None]
        if missing_tools:
            errors.append(f"Missing required tools: {' '.join(missing_tools)}")

        if not self.credentials_check():
            errors.append("AWS credentials could not be resolved")

        missing_vars = self.environment.missing_keys()
        if missing_vars:
            errors.append(f"Missing or empty variables in .env: {' '.join(missing_vars)}")

        terraform_dir = self.settings.terraform_path
        if not (terraform_dir / "terraform.tfvars").is_file():
            errors.append("terraform.tfvars not found; copy terraform.tfvars.example to terraform.tfvars")

        try:
            self.backend_config = BackendConfig.from_backend_file(
                terraform_dir / "backend.tf",
                default_region=self.settings.aws_region,
            )
        except PreconditionError as e:
            errors.append(str(e))

        if errors:
            for error in errors:
                logger.error("Precondition failed", error=error)
            raise PreconditionError(
                f"{len(errors)} precondition(s) failed",
                missing=errors,
            )

        logger.info("All prerequisites met ✓", domain=self.environment.domain)

    def _bootstrap_backend(self) -> None:
        logger.info("Setting up remote state backend...", step=True)
        assert self.backend_config is not None
        self.backend_factory(self.backend_config).bootstrap()

    def _check_existing_infrastructure(self) -> ResourceSet:
        logger.info("Checking for existing infrastructure...", step=True)
        self.driver.ensure_initialized()
        resources = self.driver.list_resources()
        self.known_resources = resources

        if resources.existing:
            logger.warning("================================================")
            logger.warning("⚠️  EXISTING INFRASTRUCTURE DETECTED")
            logger.warning("================================================")
            for address in resources:
                logger.info(f"  - {address}")
        else:
            logger.info("No existing infrastructure found ✓")
        return resources

    def _decide_clean_slate(self, resources: ResourceSet) -> None:
        if self.approvals.clean:
            logger.info("Force clean mode...")
            self._destroy_and_clean(resources)
            return

        if not resources.existing:
            logger.info("Fresh deployment...")
            return

        logger.warning("This will destroy ALL existing infrastructure and start a fresh deployment")
        logger.error("⚠️  THIS ACTION CANNOT BE UNDONE!")
        if self.confirmer.confirm("Proceed with clean slate?", flag="--clean"):
            self._destroy_and_clean(resources)
        else:
            logger.info("Continuing with existing infrastructure...")
            logger.warning("Existing resources are reused as-is and not checked for drift")

    def _destroy_and_clean(self, resources: ResourceSet) -> None:
        logger.info("Destroying existing infrastructure...", step=True)
        try:
            self.driver.destroy()
            logger.info("Infrastructure destroyed ✓")
        except DestroyFailedError as e:
            logger.warning("Destroy failed. Removing from state...", exit_code=e.exit_code)
            self._remove_all_from_state(resources)
            logger.warning("Removed from state. Manual AWS cleanup may be needed.")

        self.driver.clean_local_artifacts(extra_paths=[self.settings.inventory_path])
        self.known_resources = ResourceSet()
        logger.info("Cleanup completed ✓")

    def _remove_all_from_state(self, resources: ResourceSet) -> None:
        addresses = list(resources) or list(self.driver.list_resources()) or list(self.settings.tracked_resources)
        failed = []
        for address in addresses:
            try:
                if not self.driver.remove_from_state(address):
                    failed.append(address)
            except HostDeployError as e:
                logger.warning("Failed to remove from state", address=address, error=str(e))
                failed.append(address)
        if failed:
            self.run_state.details["state_rm_failed"] = " ".join(failed)

    def _deploy_infrastructure(self) -> InfraOutputs:
        logger.info("Deploying infrastructure with Terraform...", step=True)

        with self._phase(RunPhase.PLAN):
            logger.info("Initializing Terraform...")
            self.driver.init()
            logger.info("Validating configuration...")
            self.driver.validate()

        with self._phase(RunPhase.LOCK_CLEAR):
            self._clear_lock()

        with self._phase(RunPhase.PLAN):
            logger.info("Planning changes...")
            handle = self.driver.plan()

        with self._phase(RunPhase.APPLY):
            logger.info("Applying changes...")
            outputs = self.driver.apply(handle)
            logger.info("Infrastructure deployed ✓")
        return outputs

    def _clear_lock(self) -> None:
        logger.info("Checking for state locks...")
        try:
            lock = self.lock_client.detect_lock(lock_timeout=self.settings.lock_timeout_seconds)
        except LockParseError as e:
            print_diagnostics("Raw Terraform output", e.diagnostics)
            raise RunAborted("Could not parse lock ID from Terraform output") from e
        except BackendUnreachableError as e:
            print_diagnostics("Raw Terraform output", e.diagnostics)
            raise RunAborted(f"Error checking state (not a lock issue): {e}", exit_code=e.exit_code) from e

        if lock is None:
            logger.info("No state locks detected ✓")
            return

        log_lock_details(lock)
        if not self.confirmer.confirm(
            "Automatically unlock?",
            approved=self.approvals.force_unlock,
            flag="--force-unlock",
        ):
            raise LockOverrideDeclined(lock)

        logger.info("Unlocking state...")
        self.lock_client.force_unlock(lock.id)
        logger.info("State unlocked ✓")
        self.sleep(self.settings.unlock_settle_seconds)

    def _configure(self, outputs: InfraOutputs) -> None:
        logger.info("Configuring host...", step=True)
        if not outputs.instance_public_ip:
            raise ConfigFailedError("Infrastructure outputs have no instance_public_ip")

        write_inventory(
            self.settings.inventory_path,
            outputs.instance_public_ip,
            self.settings.ssh_user,
            self.settings.ssh_private_key,
        )
        self.applier.run(self.settings.ansible_path, self.environment.configuration_env())

    def _verify(self, outputs: InfraOutputs) -> None:
        logger.info("Verifying deployment...", step=True)
        domain = outputs.domain or self.environment.domain
        server_ip = outputs.instance_public_ip
        if not domain or not server_ip:
            logger.warning("Could not get deployment outputs")
            return

        logger.info(f"Waiting for services ({self.settings.verify_settle_seconds:g}s)...")
        self.sleep(self.settings.verify_settle_seconds)

        logger.info("Checking application...")
        result = self.prober(
            f"https://{domain}",
            accepted_codes=self.settings.accepted_status_codes,
            timeout=self.settings.probe_timeout_seconds,
        )
        if result.ok:
            logger.info(f"Application accessible ✓ (HTTP {result.status_code})")
        else:
            status = result.status_code if result.status_code is not None else "000"
            extra = {"error": result.error} if result.error else {}
            logger.warning(f"Application returned HTTP {status} (may need more time)", **extra)
        self.run_state.details["verify_status"] = str(result.status_code or "000")

        logger.info("======================================")
        logger.info("Deployment Summary")
        logger.info("======================================")
        logger.info(f"URL: https://{domain}")
        logger.info(f"IP: {server_ip}")
        logger.info(f"SSH: ssh -i {self.settings.ssh_private_key} {self.settings.ssh_user}@{server_ip}")
        logger.info("======================================")

    def _handle_failure(self, error: BaseException, exit_code: int) -> int:
        self.run_state.fail(exit_code)
        logger.error("================================================")
        logger.error(
            f"Deployment failed with exit code: {self.run_state.exit_code}",
            phase=self.run_state.failed_phase.value if self.run_state.failed_phase else None,
        )
        logger.error("================================================")
        logger.warning("An error occurred during deployment.", error=str(error))

        if self.confirmer.confirm(
            "Do you want to clean up and start fresh?",
            approved=self.approvals.cleanup_on_failure,
            flag="--cleanup-on-failure",
        ):
            logger.info("Cleaning up failed deployment...")
            try:
                self._destroy_and_clean(self.known_resources)
            except HostDeployError as e:
                logger.error("Cleanup failed", error=str(e))
            else:
                logger.info("Cleanup completed. Fix the error and run: hostdeploy deploy")
        else:
            logger.info("Cleanup skipped. Fix the error and rerun: hostdeploy deploy")

        return self._finish()


def build_orchestrator(
    settings: Settings,
    approvals: Approvals,
    confirmer: Optional[Confirmer] = None,
) -> Orchestrator:
    """Wire the orchestrator to terraform, ansible and the AWS backend."""
    root = settings.resolve_root()
    environment = DeploymentEnvironment.load(root / ".env")
    driver = TerraformDriver(
        settings.terraform_path,
        binary=settings.terraform_binary,
        variables=environment.terraform_variables(),
        command_timeout=settings.command_timeout_seconds,
        prepare_timeout=settings.prepare_timeout_seconds,
    )
    lock_client = LockClient(
        settings.terraform_path,
        terraform_binary=settings.terraform_binary,
        env=driver.env,
        probe_timeout=settings.lock_probe_timeout_seconds,
        command_timeout=settings.command_timeout_seconds,
    )
    applier = AnsibleApplier(
        settings.inventory_path,
        playbook=settings.playbook,
        binary=settings.ansible_binary,
        timeout=settings.configure_timeout_seconds,
    )
    return Orchestrator(
        settings,
        environment,
        driver=driver,
        applier=applier,
        lock_client=lock_client,
        confirmer=confirmer or Confirmer(),
        approvals=approvals,
    )
