"""Tests for the standalone lock manager."""

from hostdeploy.core.exceptions import BackendUnreachableError, LockParseError, UnlockFailedError
from hostdeploy.deploy.models import LockInfo, LockOperation
from hostdeploy.deploy.unlock import manage_lock
from hostdeploy.utils.prompt import Confirmer

from fakes import FakeLockClient, ScriptedInput, names
from samples import LOCK_ID


LOCK = LockInfo(id=LOCK_ID, path="todo-app-tfstate/prod/terraform.tfstate", operation=LockOperation.PLAN, who="alice@laptop")


class FailingUnlockClient(FakeLockClient):
    def force_unlock(self, lock_id: str) -> None:
        self.calls.append(("force_unlock", lock_id))
        raise UnlockFailedError(lock_id, output="Failed to unlock state: LockID mismatch", exit_code=1)


def test_explicit_id_is_released_without_detection():
    calls = []
    client = FakeLockClient(calls, lock=LOCK)
    scripted = ScriptedInput()

    assert manage_lock(client, Confirmer(input_fn=scripted), lock_id=LOCK_ID) == 0

    assert calls == [("force_unlock", LOCK_ID)]
    assert scripted.prompts == []


def test_no_lock_exits_zero(console_logging, capsys):
    calls = []

    assert manage_lock(FakeLockClient(calls), Confirmer(input_fn=ScriptedInput())) == 0

    assert calls == [("detect_lock", 5)]
    assert "No locks detected" in capsys.readouterr().out


def test_detected_lock_shows_details_and_hint(console_logging, capsys):
    calls = []

    manage_lock(FakeLockClient(calls, lock=LOCK), Confirmer(input_fn=ScriptedInput()))

    out = capsys.readouterr().out
    assert f"lock_id={LOCK_ID}" in out
    assert "who=alice@laptop" in out
    assert f"terraform force-unlock -force {LOCK_ID}" in out


def test_declined_unlock_is_cancelled(console_logging, capsys):
    calls = []
    scripted = ScriptedInput({"Unlock now?": "n"})

    assert manage_lock(FakeLockClient(calls, lock=LOCK), Confirmer(input_fn=scripted)) == 1

    assert "force_unlock" not in names(calls)
    assert "Unlock cancelled" in capsys.readouterr().out


def test_confirmed_unlock_releases_detected_id():
    calls = []
    scripted = ScriptedInput({"Unlock now?": "yes"})

    assert manage_lock(FakeLockClient(calls, lock=LOCK), Confirmer(input_fn=scripted)) == 0

    assert calls[-1] == ("force_unlock", LOCK_ID)


def test_yes_flag_skips_prompt():
    calls = []
    confirmer = Confirmer(input_fn=ScriptedInput(), interactive=False)

    assert manage_lock(FakeLockClient(calls, lock=LOCK), confirmer, approved=True) == 0

    assert calls[-1] == ("force_unlock", LOCK_ID)


def test_non_interactive_without_flag_declines():
    calls = []
    confirmer = Confirmer(input_fn=ScriptedInput({"Unlock now?": "yes"}), interactive=False)

    assert manage_lock(FakeLockClient(calls, lock=LOCK), confirmer) == 1
    assert "force_unlock" not in names(calls)


def test_parse_failure_shows_raw_output(capsys):
    calls = []
    error = LockParseError("Could not parse lock ID from Terraform output", diagnostics="Lock Info:\n  Who: bob\n")

    assert manage_lock(FakeLockClient(calls, error=error), Confirmer(input_fn=ScriptedInput())) == 1

    assert "force_unlock" not in names(calls)
    assert "Who: bob" in capsys.readouterr().err


def test_backend_failure_is_not_reported_as_unlocked(capsys):
    calls = []
    error = BackendUnreachableError("S3 backend unreachable", diagnostics="AccessDenied", exit_code=1)

    assert manage_lock(FakeLockClient(calls, error=error), Confirmer(input_fn=ScriptedInput())) == 1

    assert "AccessDenied" in capsys.readouterr().err


def test_failed_unlock_returns_non_zero(capsys):
    calls = []
    client = FailingUnlockClient(calls, lock=LOCK)

    assert manage_lock(client, Confirmer(input_fn=ScriptedInput()), lock_id="wrong-id") == 1

    assert "LockID mismatch" in capsys.readouterr().err
