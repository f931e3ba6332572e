from pathlib import Path

import pytest

from sky1_image import firstboot
from sky1_image.errors import CommandError
from sky1_image.lib import grubcfg
from sky1_image.lib.bootloader import render_grub_cfg


@pytest.fixture
def target(tmp_path: Path, fake_run, no_tools) -> Path:
    """A first-boot root on an O6N with a freshly built image's state."""

    root = tmp_path / "root"
    grub = root / "boot/efi/GRUB/grub.cfg"
    grub.parent.mkdir(parents=True)
    grub.write_text(render_grub_cfg(kernel_version="6.18.10-sky1", root_uuid="uuid-r"))

    dt = root / "sys/firmware/devicetree/base/compatible"
    dt.parent.mkdir(parents=True)
    dt.write_bytes(b"radxa,orion-o6n\0cix,sky1\0")

    part = root / "sys/class/block/mmcblk0p2/partition"
    part.parent.mkdir(parents=True)
    part.write_text("2\n")

    (root / "etc/ssh").mkdir(parents=True)
    (root / "etc/machine-id").write_text("")
    (root / "var/lib/dbus").mkdir(parents=True)

    counter = {"n": 0}

    def machine_id(argv):
        counter["n"] += 1
        (root / "etc/machine-id").write_text(f"{counter['n']:032x}\n")

    def ssh_keys(argv):
        for name in ("ssh_host_ed25519_key", "ssh_host_ed25519_key.pub"):
            (root / "etc/ssh" / name).write_text(f"key-{counter['n']}")

    fake_run.on("findmnt", stdout="/dev/mmcblk0p2\n")
    fake_run.on("lsblk", stdout="mmcblk0\n")
    fake_run.on("systemd-machine-id-setup", effect=machine_id)
    fake_run.on("ssh-keygen", effect=ssh_keys)
    no_tools["growpart"] = "/usr/bin/growpart"
    return root


def _snapshot(root: Path):
    return (
        (root / "etc/machine-id").read_text(),
        sorted((p.name, p.read_text()) for p in (root / "etc/ssh").iterdir()),
        (root / "boot/efi/GRUB/grub.cfg").read_text(),
    )


def test_first_run_provisions_everything(target: Path, fake_run) -> None:
    assert firstboot.run_firstboot(target) is True

    assert fake_run.ran("growpart", "/dev/mmcblk0", "2")
    assert fake_run.ran("resize2fs", "/dev/mmcblk0p2")
    assert fake_run.ran("systemd-machine-id-setup", f"--root={target}")
    assert fake_run.ran("ssh-keygen", "-A", "-f", str(target))
    assert (target / "etc/machine-id").read_text().strip() == f"{1:032x}"
    assert (target / "var/lib/dbus/machine-id").is_symlink()
    assert (target / firstboot.FIRSTBOOT_MARKER).exists()


def test_second_run_is_a_noop(target: Path, fake_run) -> None:
    firstboot.run_firstboot(target)
    before = _snapshot(target)
    n_calls = len(fake_run.calls)

    assert firstboot.run_firstboot(target) is False

    assert len(fake_run.calls) == n_calls
    assert _snapshot(target) == before


def test_boot_menu_pruned_to_detected_board(target: Path) -> None:
    firstboot.run_firstboot(target)

    cfg = target / "boot/efi/GRUB/grub.cfg"
    left = grubcfg.entries(grubcfg.parse(cfg.read_text()))
    assert len(left) == 1
    assert left[0].references("/sky1-orion-o6n.dtb")

    backup = cfg.with_name("grub.cfg.bak")
    assert len(grubcfg.entries(grubcfg.parse(backup.read_text()))) == 3


def test_unknown_board_leaves_menu_alone(target: Path) -> None:
    (target / "sys/firmware/devicetree/base/compatible").write_bytes(b"acme,board\0")
    cfg = target / "boot/efi/GRUB/grub.cfg"
    before = cfg.read_text()

    firstboot.run_firstboot(target)

    assert cfg.read_text() == before
    assert (target / firstboot.FIRSTBOOT_MARKER).exists()


def test_failed_actions_do_not_stop_the_marker(target: Path, fake_run) -> None:
    fake_run.on("resize2fs", returncode=1, stderr="bad superblock")
    fake_run.on("ssh-keygen", returncode=1)

    assert firstboot.run_firstboot(target) is True
    assert (target / firstboot.FIRSTBOOT_MARKER).exists()


def test_growpart_nochange_is_not_an_error(target: Path, fake_run) -> None:
    fake_run.on("growpart", returncode=1, stdout="NOCHANGE: partition 2 is size 100")
    firstboot.expand_rootfs(target)
    assert fake_run.ran("resize2fs")


def test_missing_growpart_still_resizes(target: Path, fake_run, no_tools) -> None:
    del no_tools["growpart"]
    firstboot.expand_rootfs(target)
    assert not fake_run.ran("growpart")
    assert fake_run.ran("resize2fs")


def test_expand_rootfs_propagates_resize_failure(target: Path, fake_run) -> None:
    fake_run.on("resize2fs", returncode=1)
    with pytest.raises(CommandError):
        firstboot.expand_rootfs(target)


def test_marker_write_failure_propagates(target: Path, monkeypatch) -> None:
    def boom(root):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr(firstboot, "write_marker", boom)
    with pytest.raises(PermissionError):
        firstboot.run_firstboot(target)


def test_preconfig_creates_user_and_is_erased(target: Path, fake_run) -> None:
    (target / "etc/hosts").write_text("127.0.1.1\tSky1-Desktop\n")
    gdm = target / "etc/gdm3/custom.conf"
    gdm.parent.mkdir(parents=True)
    gdm.write_text("[daemon]\nAutomaticLoginEnable=true\nAutomaticLogin=sky1\n")
    sddm = target / "etc/sddm.conf.d/10-wayland.conf"
    sddm.parent.mkdir(parents=True)
    sddm.write_text("[Autologin]\nUser=sky1\nSession=plasma\n")

    cfg = target / firstboot.FIRSTBOOT_CONFIG
    cfg.write_text('# preset\nHOSTNAME=lab-01\nUSERNAME="alice"\nPASSWORD_HASH=\'$6$salt$hash\'\nPASSWORD=ignored\n')

    pre = firstboot.apply_preconfig(target)

    assert pre is not None and pre.username == "alice"
    assert (target / "etc/hostname").read_text() == "lab-01\n"
    assert "lab-01" in (target / "etc/hosts").read_text()
    assert "AutomaticLogin=alice" in gdm.read_text()
    assert "AutomaticLoginEnable=true" in gdm.read_text()
    assert "User=alice" in sddm.read_text()
    assert (target / firstboot.WIZARD_DONE_MARKER).exists()
    assert not cfg.exists()

    useradd = fake_run.ran("useradd")[0]
    assert useradd[:3] == ["useradd", "-R", str(target)]
    assert useradd[-1] == "alice"

    i = fake_run.index("chpasswd", "-R", str(target), "-e")
    assert fake_run.inputs[i] == "alice:$6$salt$hash\n"
    assert not fake_run.ran("hostnamectl")


def test_preconfig_plain_password(target: Path, fake_run) -> None:
    cfg = target / firstboot.FIRSTBOOT_CONFIG
    cfg.write_text("USERNAME=bob\nPASSWORD=hunter2\n")

    firstboot.apply_preconfig(target)

    i = fake_run.index("chpasswd")
    assert "-e" not in fake_run.calls[i]
    assert fake_run.inputs[i] == "bob:hunter2\n"


def test_preconfig_erased_even_when_user_creation_fails(target: Path, fake_run) -> None:
    cfg = target / firstboot.FIRSTBOOT_CONFIG
    cfg.write_text("USERNAME=bob\nPASSWORD=hunter2\n")
    fake_run.on("chpasswd", returncode=1)

    with pytest.raises(CommandError):
        firstboot.apply_preconfig(target)
    assert not cfg.exists()


def test_no_preconfig_file(target: Path) -> None:
    assert firstboot.apply_preconfig(target) is None


def test_trust_desktop_files(tmp_path: Path, fake_run, no_tools) -> None:
    desktop = tmp_path / "Desktop"
    desktop.mkdir()
    (desktop / "a.desktop").write_text("[Desktop Entry]\n")
    (desktop / "notes.txt").write_text("x")
    no_tools["gio"] = "/usr/bin/gio"

    trusted = firstboot.trust_desktop_files(tmp_path)

    assert trusted == [desktop / "a.desktop"]
    assert fake_run.ran("gio", "set", str(desktop / "a.desktop"), "metadata::trusted", "true")


def test_backslashes_in_preconfig_are_written_literally(target: Path, fake_run) -> None:
    (target / "etc/hosts").write_text("127.0.1.1\tSky1-Desktop\n")
    lightdm = target / "etc/lightdm/lightdm.conf.d/50-autologin.conf"
    lightdm.parent.mkdir(parents=True)
    lightdm.write_text("[Seat:*]\nautologin-user=sky1\n")
    cfg = target / firstboot.FIRSTBOOT_CONFIG
    cfg.write_text("HOSTNAME=box\\1\nUSERNAME=ed\\g<0>\nPASSWORD=pw\n")

    firstboot.apply_preconfig(target)

    assert (target / "etc/hostname").read_text() == "box\\1\n"
    assert (target / "etc/hosts").read_text() == "127.0.1.1\tbox\\1\n"
    assert lightdm.read_text() == "[Seat:*]\nautologin-user=ed\\g<0>\n"


def test_non_utf8_grub_cfg_is_still_pruned(target: Path) -> None:
    cfg = target / "boot/efi/GRUB/grub.cfg"
    with cfg.open("ab") as f:
        f.write(b"# caf\xe9\n")

    firstboot.run_firstboot(target)

    raw = cfg.read_bytes()
    assert raw.endswith(b"# caf\xe9\n")
    left = grubcfg.entries(grubcfg.parse(raw.decode("utf-8", errors="surrogateescape")))
    assert len(left) == 1
    assert (target / firstboot.FIRSTBOOT_MARKER).exists()


def test_unexpected_error_in_a_step_still_writes_the_marker(target: Path, monkeypatch) -> None:
    def broken(root):
        raise ValueError("unparseable device tree")

    monkeypatch.setattr(firstboot, "detect_board_and_prune", broken)
    cfg = target / firstboot.FIRSTBOOT_CONFIG
    cfg.write_text("HOSTNAME=lab-02\n")

    assert firstboot.run_firstboot(target) is True

    assert (target / "etc/hostname").read_text() == "lab-02\n"
    assert (target / firstboot.FIRSTBOOT_MARKER).exists()
