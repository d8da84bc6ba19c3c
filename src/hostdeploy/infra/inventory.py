"""Host inventory for the configuration step."""

from pathlib import Path

import structlog
import yaml

logger = structlog.get_logger()

HEADER = "# Generated by hostdeploy on every run. Do not edit.\n"


def build_inventory(address: str, user: str, private_key: Path, group: str = "app_servers") -> dict:
    return {
        "all": {
            "children": {
                group: {
                    "hosts": {
                        address: {
                            "ansible_host": address,
                            "ansible_user": user,
                            "ansible_ssh_private_key_file": str(Path(private_key).expanduser()),
                            "ansible_python_interpreter": "/usr/bin/python3",
                        }
                    }
                }
            }
        }
    }


def write_inventory(path: Path, address: str, user: str, private_key: Path) -> Path:
    """Write the YAML inventory for ``address``, replacing any previous file."""
    if not address:
        raise ValueError("Inventory requires a target address")
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = path.with_suffix(".tmp")
    with open(tmp_file, "w") as f:
        f.write(HEADER)
        yaml.safe_dump(build_inventory(address, user, private_key), f, default_flow_style=False, sort_keys=False)
    tmp_file.replace(path)
    logger.info("Inventory written", path=str(path), host=address)
    return path
