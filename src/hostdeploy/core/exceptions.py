"""Custom exceptions for hostdeploy."""

from typing import Optional


class HostDeployError(Exception):
    """Base exception for all deployment errors."""

    def __init__(self, message: str, code: Optional[str] = None, exit_code: int = 1):
        super().__init__(message)
        self.code = code
        self.exit_code = exit_code


class PreconditionError(HostDeployError):
    """A required tool, credential or configuration value is missing."""

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message, code="precondition")
        self.missing = list(missing or [])


class CommandError(HostDeployError):
    """An external command could not be started or timed out."""

    def __init__(self, message: str, output: str = "", exit_code: int = 1):
        super().__init__(message, code="command", exit_code=exit_code)
        self.output = output


class BackendError(HostDeployError):
    """State backend errors."""
    pass


class BackendUnreachableError(BackendError):
    """The state backend could not be queried for reasons other than a lock."""

    def __init__(self, message: str, diagnostics: str = "", exit_code: int = 1):
        super().__init__(message, code="backend_unreachable", exit_code=exit_code)
        self.diagnostics = diagnostics


class LockError(BackendError):
    """State lock errors."""
    pass


class LockContentionError(LockError):
    """Another operation holds the state lock."""

    def __init__(self, lock_info):
        super().__init__(f"State is locked by {lock_info.who or 'unknown'}", code="lock_contention")
        self.lock_info = lock_info


class LockParseError(LockError):
    """Lock contention was reported but its metadata could not be parsed."""

    def __init__(self, message: str, diagnostics: str = ""):
        super().__init__(message, code="lock_parse")
        self.diagnostics = diagnostics


class UnlockFailedError(LockError):
    """Force-releasing a lock failed."""

    def __init__(self, lock_id: str, output: str = "", exit_code: int = 1):
        super().__init__(f"Failed to unlock state lock {lock_id}", code="unlock_failed", exit_code=exit_code)
        self.lock_id = lock_id
        self.output = output


class LockOverrideDeclined(LockContentionError):
    """The operator declined to override a held lock."""

    def __init__(self, lock_info):
        super().__init__(lock_info)
        self.code = "lock_declined"


class InfrastructureError(HostDeployError):
    """Infrastructure driver errors."""

    def __init__(self, message: str, output: str = "", exit_code: int = 1, code: Optional[str] = None):
        super().__init__(message, code=code, exit_code=exit_code)
        self.output = output


class ApplyFailedError(InfrastructureError):
    """init, validate, plan or apply failed."""

    def __init__(self, message: str, output: str = "", exit_code: int = 1):
        super().__init__(message, output=output, exit_code=exit_code, code="apply_failed")


class DestroyFailedError(InfrastructureError):
    """destroy failed."""

    def __init__(self, message: str, output: str = "", exit_code: int = 1):
        super().__init__(message, output=output, exit_code=exit_code, code="destroy_failed")


class ConfigFailedError(HostDeployError):
    """The remote configuration step exited non-zero."""

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message, code="config_failed", exit_code=exit_code)
