"""State lock manager command."""

from __future__ import annotations

import sys
from typing import Optional

import structlog

from hostdeploy.core.exceptions import BackendUnreachableError, LockParseError, UnlockFailedError
from hostdeploy.deploy.models import LockInfo
from hostdeploy.state.lock import LockClient
from hostdeploy.utils.prompt import Confirmer

logger = structlog.get_logger()


def log_lock_details(lock: LockInfo) -> None:
    logger.warning(
        "Found state lock",
        lock_id=lock.id,
        path=lock.path or "-",
        operation=lock.operation.value,
        who=lock.who or "-",
        created=lock.created_raw or "-",
    )


def print_diagnostics(title: str, text: str) -> None:
    """Show raw tool output on stderr, unparsed."""
    print(f"{title}:", file=sys.stderr)
    print(text.rstrip(), file=sys.stderr)


def manage_lock(
    lock_client: LockClient,
    confirmer: Confirmer,
    *,
    lock_id: Optional[str] = None,
    lock_timeout: int = 5,
    approved: bool = False,
) -> int:
    """Release the state lock, returning the process exit code.

    With ``lock_id`` the lock is released directly without querying the
    backend. Otherwise the lock is detected, shown, and released only after
    confirmation.
    """
    logger.info("Terraform State Lock Manager")

    if lock_id:
        logger.warning("Unlocking with provided ID", lock_id=lock_id)
        try:
            lock_client.force_unlock(lock_id)
        except UnlockFailedError as e:
            logger.error("Failed to unlock state", lock_id=lock_id, exit_code=e.exit_code)
            if e.output:
                print_diagnostics("Raw Terraform output", e.output)
            return e.exit_code or 1
        logger.info("✓ State unlocked")
        return 0

    logger.info("Checking for state locks...")
    try:
        lock = lock_client.detect_lock(lock_timeout=lock_timeout)
    except LockParseError as e:
        logger.error("Could not parse lock ID from Terraform output")
        print_diagnostics("Raw Terraform output", e.diagnostics)
        return 1
    except BackendUnreachableError as e:
        logger.error("Error checking state (not a lock issue)", error=str(e))
        print_diagnostics("Raw Terraform output", e.diagnostics)
        return e.exit_code or 1

    if lock is None:
        logger.info("✓ No locks detected")
        return 0

    logger.error("Lock detected!")
    log_lock_details(lock)
    logger.info(f"To unlock, run: terraform force-unlock -force {lock.id}")

    if not confirmer.confirm("Unlock now?", approved=approved, flag="--yes"):
        logger.info("Unlock cancelled")
        return 1

    try:
        lock_client.force_unlock(lock.id)
    except UnlockFailedError as e:
        logger.error("Failed to unlock state", lock_id=lock.id, exit_code=e.exit_code)
        if e.output:
            print_diagnostics("Raw Terraform output", e.output)
        return e.exit_code or 1

    logger.info("✓ State unlocked")
    return 0
