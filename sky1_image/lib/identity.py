from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import List

from .command import run_cmd

logger = logging.getLogger(__name__)

MACHINE_ID = "etc/machine-id"
DBUS_MACHINE_ID = "var/lib/dbus/machine-id"
SSH_DIR = "etc/ssh"


def ssh_host_keys(root: Path) -> List[Path]:
    return sorted((Path(root) / SSH_DIR).glob("ssh_host_*"))


def scrub_identity(root: Path) -> None:
    """Leave an empty machine-id (systemd regenerates it) and no SSH host keys."""

    root = Path(root)
    for rel in (MACHINE_ID, DBUS_MACHINE_ID):
        (root / rel).unlink(missing_ok=True)

    machine_id = root / MACHINE_ID
    machine_id.parent.mkdir(parents=True, exist_ok=True)
    machine_id.touch()
    logger.info("Cleared machine-id for first-boot generation")

    keys = ssh_host_keys(root)
    for key in keys:
        key.unlink()
    logger.info("Cleared %d SSH host key file(s)", len(keys))


def regenerate_machine_id(root: Path = Path("/")) -> str:
    root = Path(root)
    for rel in (MACHINE_ID, DBUS_MACHINE_ID):
        (root / rel).unlink(missing_ok=True)

    argv = ["systemd-machine-id-setup"]
    if root != Path("/"):
        argv.append(f"--root={root}")
    run_cmd(argv)

    dbus_dir = root / "var/lib/dbus"
    if dbus_dir.is_dir():
        os.symlink("/etc/machine-id", dbus_dir / "machine-id")

    machine_id = (root / MACHINE_ID).read_text(encoding="utf-8").strip()
    logger.info("Machine ID: %s", machine_id)
    return machine_id


def regenerate_ssh_host_keys(root: Path = Path("/")) -> List[Path]:
    root = Path(root)
    for key in ssh_host_keys(root):
        key.unlink()

    done = False
    if shutil.which("dpkg-reconfigure") and root == Path("/"):
        r = run_cmd(["dpkg-reconfigure", "openssh-server"], check=False)
        done = r.ok and bool(ssh_host_keys(root))
    if not done:
        argv = ["ssh-keygen", "-A"]
        if root != Path("/"):
            argv += ["-f", str(root)]
        run_cmd(argv)

    keys = [p for p in ssh_host_keys(root) if p.suffix == ".pub"]
    logger.info("SSH host keys generated: %s", ", ".join(p.name for p in keys) or "none")
    return keys
