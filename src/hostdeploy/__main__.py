"""CLI entrypoints (hostdeploy deploy, hostdeploy unlock)."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from pydantic import ValidationError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hostdeploy", description="Single-host deployment orchestrator")
    parser.add_argument("--log-level", help="Override HOSTDEPLOY_LOG_LEVEL")
    parser.add_argument("--log-format", choices=["console", "json"], help="Override HOSTDEPLOY_LOG_FORMAT")
    parser.add_argument("--project-root", type=Path, help="Repository root (default: git top-level)")
    # Bare `hostdeploy [-c]` runs a deployment
    parser.add_argument("-c", "--clean", action="store_true", help="Destroy existing infrastructure first, without asking")
    sub = parser.add_subparsers(dest="cmd")

    cmd_deploy = sub.add_parser("deploy", help="Provision and configure the host")
    cmd_deploy.add_argument(
        "-c", "--clean",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Destroy existing infrastructure first, without asking",
    )
    cmd_deploy.add_argument("--force-unlock", action="store_true", help="Release a detected state lock without asking")
    cmd_deploy.add_argument(
        "--cleanup-on-failure",
        action="store_true",
        help="Destroy and clean up without asking when the run fails",
    )

    cmd_unlock = sub.add_parser("unlock", help="Detect and release the state lock")
    cmd_unlock.add_argument("lock_id", nargs="?", help="Release this lock ID directly")
    cmd_unlock.add_argument("-y", "--yes", action="store_true", help="Release a detected lock without asking")

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    from hostdeploy.core.config import DeploymentEnvironment, Settings
    from hostdeploy.utils.logging import setup_logging

    try:
        settings = Settings()
    except ValidationError as e:
        print(f"ERROR: invalid HOSTDEPLOY_* configuration:\n{e}", file=sys.stderr)
        sys.exit(1)

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format
    if args.project_root:
        overrides["project_root"] = args.project_root
    if overrides:
        settings = settings.model_copy(update=overrides)

    setup_logging(settings.log_level, settings.log_format)

    if args.cmd == "unlock":
        from hostdeploy.deploy.unlock import manage_lock
        from hostdeploy.infra.terraform import TerraformDriver
        from hostdeploy.state.lock import LockClient
        from hostdeploy.utils.prompt import Confirmer

        environment = DeploymentEnvironment.load(settings.resolve_root() / ".env")
        # The probe is a plan, which needs the same input variables as a deploy.
        env = TerraformDriver(settings.terraform_path, variables=environment.terraform_variables()).env
        lock_client = LockClient(
            settings.terraform_path,
            terraform_binary=settings.terraform_binary,
            env=env,
            probe_timeout=settings.lock_probe_timeout_seconds,
            command_timeout=settings.command_timeout_seconds,
        )
        try:
            exit_code = manage_lock(
                lock_client,
                Confirmer(),
                lock_id=args.lock_id,
                lock_timeout=settings.unlock_lock_timeout_seconds,
                approved=args.yes,
            )
        except KeyboardInterrupt:
            print("Interrupted; check the lock again with: hostdeploy unlock", file=sys.stderr)
            exit_code = 130
        sys.exit(exit_code)

    from hostdeploy.deploy.orchestrator import Approvals, build_orchestrator

    approvals = Approvals(
        clean=args.clean,
        force_unlock=getattr(args, "force_unlock", False),
        cleanup_on_failure=getattr(args, "cleanup_on_failure", False),
    )
    orchestrator = build_orchestrator(settings, approvals)
    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
