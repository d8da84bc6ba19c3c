"""Blocking command execution for terraform and ansible."""

import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

import structlog

from hostdeploy.core.exceptions import CommandError

logger = structlog.get_logger()

TIMEOUT_EXIT_CODE = 124


@dataclass
class CommandResult:
    """Outcome of an external command; stdout and stderr are merged."""

    args: List[str]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def which(executable: str) -> Optional[str]:
    return shutil.which(executable)


def run_command(
    args: Sequence[str],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    stream: bool = False,
) -> CommandResult:
    """Run a command to completion and return its merged output.

    With ``stream=True`` each output line is echoed to stdout as it arrives.
    Without a timeout the call blocks until the process exits.

    Raises:
        CommandError: If the executable cannot be started or the timeout expires.
    """
    args = [str(a) for a in args]
    logger.debug("Running command", command=" ".join(args), cwd=str(cwd) if cwd else None)

    try:
        if stream:
            return _run_streaming(args, cwd=cwd, env=env, timeout=timeout)

        completed = subprocess.run(
            args,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise CommandError(f"Executable not found: {args[0]}") from e
    except subprocess.TimeoutExpired as e:
        output = e.output or ""
        if isinstance(output, bytes):
            output = output.decode("utf-8", errors="replace")
        raise CommandError(
            f"Command timed out after {timeout}s: {' '.join(args[:3])}",
            output=output,
            exit_code=TIMEOUT_EXIT_CODE,
        ) from e

    return CommandResult(args=args, returncode=completed.returncode, output=completed.stdout or "")


def _echo_lines(stream, lines: List[str]) -> None:
    for line in stream:
        lines.append(line)
        sys.stdout.write(line)
    sys.stdout.flush()


def _run_streaming(
    args: List[str],
    *,
    cwd: Optional[Path],
    env: Optional[Mapping[str, str]],
    timeout: Optional[float] = None,
) -> CommandResult:
    lines: List[str] = []
    with subprocess.Popen(
        args,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        bufsize=1,  # Line buffered
    ) as process:
        assert process.stdout is not None
        reader = threading.Thread(target=_echo_lines, args=(process.stdout, lines), daemon=True)
        reader.start()
        try:
            returncode = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out, killing it", command=" ".join(args[:3]), timeout=timeout)
            process.kill()
            process.wait()
            # Grandchildren may keep the pipe open; do not wait on them forever.
            reader.join(timeout=5)
            raise subprocess.TimeoutExpired(args, timeout, output="".join(lines))
        reader.join()
    return CommandResult(args=args, returncode=returncode, output="".join(lines))
