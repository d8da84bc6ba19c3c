"""Terraform diagnostics shared by the lock tests."""

LOCK_ID = "e550de88-751a-3bda-ebf3-b9af189935af"

PLAIN_OUTPUT = f"""Acquiring state lock. This may take a few moments...

Error: Error acquiring the state lock

Error message: ConditionalCheckFailedException: The conditional request failed
Lock Info:
  ID:        {LOCK_ID}
  Path:      todo-app-tfstate/prod/terraform.tfstate
  Operation: OperationTypeApply
  Who:       deploy@ci-runner-7
  Version:   1.6.4
  Created:   2024-03-05 14:22:31.123456789 +0000 UTC
  Info:

Terraform acquires a state lock to protect the state from being written
by multiple users at the same time. Please resolve the issue above and try
again. For most commands, you can disable locking with the "-lock=false"
flag, but this is not recommended.
"""

BOXED_OUTPUT = f"""╷
│ Error: Error acquiring the state lock
│
│ Error message: ConditionalCheckFailedException: The conditional request failed
│ Lock Info:
│   ID:        {LOCK_ID}
│   Path:      todo-app-tfstate/prod/terraform.tfstate
│   Operation: OperationTypePlan
│   Who:       alice@laptop
│   Version:   1.7.0
│   Created:   2024-03-05 14:22:31.123456789 +0000 UTC
│   Info:
│
│ Terraform acquires a state lock to protect the state from being written
│ ID:        not-the-lock-id
╵
"""


def colorize(text: str) -> str:
    """Wrap every line the way terraform colors its diagnostics."""
    return "\n".join(f"\x1b[31m\x1b[1m{line}\x1b[0m" for line in text.splitlines())


class ScriptedRunner:
    """Stands in for run_command: returns canned results and records calls.

    Each result is ``(returncode, output)`` or an exception to raise.
    """

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, args, **kwargs):
        from hostdeploy.utils.process import CommandResult

        self.calls.append((list(args), kwargs))
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        returncode, output = result
        return CommandResult(args=list(args), returncode=returncode, output=output)
