"""Tests for inventory generation."""

from pathlib import Path

import pytest
import yaml

from hostdeploy.infra.inventory import HEADER, build_inventory, write_inventory


def test_inventory_targets_single_host():
    inventory = build_inventory("203.0.113.10", "ubuntu", Path("/keys/deploy"))

    hosts = inventory["all"]["children"]["app_servers"]["hosts"]
    assert list(hosts) == ["203.0.113.10"]
    assert hosts["203.0.113.10"] == {
        "ansible_host": "203.0.113.10",
        "ansible_user": "ubuntu",
        "ansible_ssh_private_key_file": "/keys/deploy",
        "ansible_python_interpreter": "/usr/bin/python3",
    }


def test_write_replaces_previous_inventory(tmp_path):
    path = tmp_path / "inventory" / "hosts.yml"

    write_inventory(path, "203.0.113.10", "ubuntu", Path("/keys/deploy"))
    write_inventory(path, "198.51.100.7", "admin", Path("/keys/deploy"))

    text = path.read_text()
    assert text.startswith(HEADER)
    hosts = yaml.safe_load(text)["all"]["children"]["app_servers"]["hosts"]
    assert list(hosts) == ["198.51.100.7"]
    assert hosts["198.51.100.7"]["ansible_user"] == "admin"
    assert not path.with_suffix(".tmp").exists()


def test_home_relative_key_is_expanded(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))

    inventory = build_inventory("203.0.113.10", "ubuntu", Path("~/.ssh/id_rsa"))

    host = inventory["all"]["children"]["app_servers"]["hosts"]["203.0.113.10"]
    assert host["ansible_ssh_private_key_file"] == str(tmp_path / ".ssh" / "id_rsa")


def test_empty_address_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        write_inventory(tmp_path / "hosts.yml", "", "ubuntu", Path("/keys/deploy"))
