"""Tests for the hostdeploy command line."""

import pytest

from hostdeploy.__main__ import build_parser, main


def test_bare_invocation_deploys():
    args = build_parser().parse_args([])

    assert args.cmd is None
    assert args.clean is False


@pytest.mark.parametrize("argv", [["-c"], ["--clean"], ["deploy", "-c"], ["-c", "deploy"]])
def test_clean_flag_positions(argv):
    assert build_parser().parse_args(argv).clean is True


def test_deploy_flags():
    args = build_parser().parse_args(["deploy", "--force-unlock", "--cleanup-on-failure"])

    assert args.cmd == "deploy"
    assert args.clean is False
    assert args.force_unlock is True
    assert args.cleanup_on_failure is True


def test_unlock_arguments():
    args = build_parser().parse_args(["unlock", "e550de88-751a-3bda-ebf3-b9af189935af", "--yes"])

    assert args.cmd == "unlock"
    assert args.lock_id == "e550de88-751a-3bda-ebf3-b9af189935af"
    assert args.yes is True
    assert build_parser().parse_args(["unlock"]).lock_id is None


def test_main_runs_orchestrator_with_approvals(monkeypatch, tmp_path):
    captured = {}

    class StubOrchestrator:
        def run(self):
            return 3

    def fake_build(settings, approvals, confirmer=None):
        captured["settings"] = settings
        captured["approvals"] = approvals
        return StubOrchestrator()

    monkeypatch.setattr("hostdeploy.deploy.orchestrator.build_orchestrator", fake_build)

    with pytest.raises(SystemExit) as exc_info:
        main(["--project-root", str(tmp_path), "deploy", "--clean", "--force-unlock"])

    assert exc_info.value.code == 3
    assert captured["settings"].project_root == tmp_path
    assert captured["approvals"].clean is True
    assert captured["approvals"].force_unlock is True
    assert captured["approvals"].cleanup_on_failure is False


def test_main_unlock_passes_lock_id(monkeypatch, tmp_path):
    captured = {}

    def fake_manage_lock(lock_client, confirmer, *, lock_id=None, lock_timeout=5, approved=False):
        captured.update(lock_id=lock_id, lock_timeout=lock_timeout, approved=approved, client=lock_client)
        return 0

    monkeypatch.setattr("hostdeploy.deploy.unlock.manage_lock", fake_manage_lock)
    monkeypatch.setenv("DOMAIN", "todo.example.com")

    with pytest.raises(SystemExit) as exc_info:
        main(["--project-root", str(tmp_path), "unlock", "abc-123"])

    assert exc_info.value.code == 0
    assert captured["lock_id"] == "abc-123"
    assert captured["lock_timeout"] == 5
    assert captured["approved"] is False
    assert captured["client"].env["TF_VAR_domain"] == "todo.example.com"


def test_invalid_settings_exit_non_zero(monkeypatch, capsys):
    monkeypatch.setenv("HOSTDEPLOY_LOG_FORMAT", "xml")

    with pytest.raises(SystemExit) as exc_info:
        main([])

    assert exc_info.value.code == 1
    assert "HOSTDEPLOY_" in capsys.readouterr().err


def test_unlock_interrupted_at_prompt(monkeypatch, tmp_path, capsys):
    def interrupted(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr("hostdeploy.deploy.unlock.manage_lock", interrupted)

    with pytest.raises(SystemExit) as exc_info:
        main(["--project-root", str(tmp_path), "unlock"])

    assert exc_info.value.code == 130
    assert "hostdeploy unlock" in capsys.readouterr().err
