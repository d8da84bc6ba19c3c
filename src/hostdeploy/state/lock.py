"""State lock detection and release.

Terraform reports lock contention only as diagnostic text, so detection runs a
read-only ``terraform plan`` with a short ``-lock-timeout`` and scans its output.
The scan is kept in :func:`parse_lock_info` so that a structured lock API can
replace it without touching :class:`LockClient` callers.

Terraform output format inside the error box::

    Lock Info:
      ID:        <lock-id>
      Path:      <path>
      Operation: <operation>
      Who:       <who>
      Version:   <version>
      Created:   <timestamp>
      Info:      <info>
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

import structlog

from hostdeploy.core.exceptions import (
    BackendUnreachableError,
    CommandError,
    LockParseError,
    UnlockFailedError,
)
from hostdeploy.deploy.models import LockInfo, LockOperation
from hostdeploy.utils.process import CommandResult, run_command

logger = structlog.get_logger()

LOCK_CONTENTION_MARKER = "Error acquiring the state lock"
LOCK_INFO_MARKER = "Lock Info:"

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
# Terraform draws a box around diagnostics with these characters.
_BOX_PREFIX_RE = re.compile(r"^[│╷╵]\s?")
_CREATED_RE = re.compile(r"(\d{4}-\d{2}-\d{2})[ T](\d{2}:\d{2}:\d{2})(?:\.\d+)?\s*([+-]\d{4}|Z)?")


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def is_lock_contention(text: str) -> bool:
    return LOCK_CONTENTION_MARKER in strip_ansi(text)


def _lock_info_block(text: str) -> List[str]:
    """Lines from the ``Lock Info:`` marker up to the next blank line."""
    block: List[str] = []
    inside = False
    for raw_line in strip_ansi(text).splitlines():
        line = _BOX_PREFIX_RE.sub("", raw_line)
        if not inside:
            if LOCK_INFO_MARKER in line:
                inside = True
            continue
        if not line.strip():
            break
        block.append(line)
    return block


def _parse_created(value: str) -> Optional[datetime]:
    match = _CREATED_RE.search(value)
    if not match:
        return None
    day, clock, offset = match.groups()
    if offset in (None, "Z"):
        offset = "+0000"
    try:
        return datetime.strptime(f"{day} {clock} {offset}", "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        return None


def parse_lock_info(text: str) -> LockInfo:
    """Parse the lock metadata block out of terraform diagnostics.

    Raises:
        LockParseError: If no lock ID can be read from the block.
    """
    fields: Dict[str, str] = {}
    for line in _lock_info_block(text):
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        if key and key not in fields:
            fields[key] = value.strip()

    id_tokens = fields.get("id", "").split()
    if not id_tokens:
        raise LockParseError("Could not parse lock ID from Terraform output", diagnostics=text)

    created_raw = fields.get("created", "")
    return LockInfo(
        id=id_tokens[0],
        path=fields.get("path", ""),
        operation=LockOperation.parse(fields.get("operation", "")),
        who=fields.get("who", ""),
        version=fields.get("version", ""),
        created_at=_parse_created(created_raw),
        created_raw=created_raw,
        info=fields.get("info", ""),
    )


class LockClient:
    """Queries and force-releases the shared state lock."""

    def __init__(
        self,
        working_dir: Path,
        *,
        terraform_binary: str = "terraform",
        env: Optional[Mapping[str, str]] = None,
        probe_timeout: float = 300.0,
        command_timeout: float = 120.0,
        runner: Callable[..., CommandResult] = run_command,
    ):
        self.working_dir = working_dir
        self.terraform_binary = terraform_binary
        self.env = env
        self.probe_timeout = probe_timeout
        self.command_timeout = command_timeout
        self._run = runner

    def detect_lock(self, lock_timeout: int = 10) -> Optional[LockInfo]:
        """Return the held lock, or None when the state is free.

        Raises:
            LockParseError: Contention was reported but no lock ID could be read.
            BackendUnreachableError: The probe failed for any other reason.
        """
        args = [
            self.terraform_binary,
            "plan",
            "-input=false",
            "-no-color",
            f"-lock-timeout={lock_timeout}s",
        ]
        try:
            result = self._run(args, cwd=self.working_dir, env=self.env, timeout=self.probe_timeout)
        except CommandError as e:
            raise BackendUnreachableError(str(e), diagnostics=e.output, exit_code=e.exit_code) from e

        if result.ok:
            return None

        if not is_lock_contention(result.output):
            raise BackendUnreachableError(
                "Error checking state (not a lock issue)",
                diagnostics=result.output,
                exit_code=result.returncode,
            )

        lock = parse_lock_info(result.output)
        logger.debug("State lock detected", lock_id=lock.id, who=lock.who)
        return lock

    def force_unlock(self, lock_id: str) -> None:
        """Release ``lock_id`` without asking terraform for confirmation."""
        args = [self.terraform_binary, "force-unlock", "-force", lock_id]
        try:
            result = self._run(args, cwd=self.working_dir, env=self.env, timeout=self.command_timeout)
        except CommandError as e:
            raise UnlockFailedError(lock_id, output=e.output, exit_code=e.exit_code) from e
        if not result.ok:
            raise UnlockFailedError(lock_id, output=result.output, exit_code=result.returncode)
        logger.info("State unlocked", lock_id=lock_id)
