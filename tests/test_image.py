import json
import signal
from pathlib import Path

import pytest

from sky1_image import image
from sky1_image.build_config import BuildConfig
from sky1_image.context import ImageCtx, release_resources
from sky1_image.errors import PrivilegeError, ResourceError, ValidationError
from sky1_image.lib import loopdev
from sky1_image.lib.loopdev import LoopBinding
from sky1_image.models import BuildRequest
from sky1_image.pipeline import PipelineResult, run_pipeline


class Recorder:
    def __init__(self, step_id: str, fail: Exception = None, effect=None) -> None:
        self.step_id = step_id
        self.title = f"step {step_id}"
        self.fail = fail
        self.effect = effect
        self.ran = False

    def run(self, ctx: ImageCtx) -> None:
        self.ran = True
        if self.effect:
            self.effect(ctx)
        if self.fail:
            raise self.fail


@pytest.fixture
def cfg(tmp_path: Path) -> BuildConfig:
    return BuildConfig(raw={"paths": {"build_dir": str(tmp_path), "state": str(tmp_path / "state.json")}})


@pytest.fixture
def as_root(monkeypatch) -> None:
    monkeypatch.setattr("os.geteuid", lambda: 0)


@pytest.fixture
def cleanups(monkeypatch):
    calls = []
    monkeypatch.setattr(image, "release_resources", lambda ctx: calls.append(ctx))
    return calls


def _request() -> BuildRequest:
    return BuildRequest.from_strings("gnome", "desktop", "rc")


def test_failure_stops_pipeline_and_cleans_up(tmp_path, cfg, as_root, cleanups) -> None:
    steps = [Recorder("10"), Recorder("20", fail=ResourceError("no loop")), Recorder("30")]

    with pytest.raises(ResourceError):
        image.build_image(_request(), cfg, steps=steps, chroot_source=tmp_path)

    assert [s.ran for s in steps] == [True, True, False]
    assert len(cleanups) == 1

    state = json.loads((tmp_path / "state.json").read_text())
    (record,) = state["builds"].values()
    assert record["status"] == "failed"
    assert record["completed_steps"] == ["10"]
    assert record["errors"][0]["step"] == "20"
    assert record["request"]["track"] == "rc"


def test_success_returns_artifact_and_cleans_up(tmp_path, cfg, as_root, cleanups) -> None:
    def finish(ctx):
        ctx.artifact = ctx.image_path
        ctx.decisions["kernel_version"] = "6.19.0-rc7-sky1-rc"

    artifact = image.build_image(_request(), cfg, steps=[Recorder("80", effect=finish)], chroot_source=tmp_path)

    assert artifact.parent == tmp_path
    assert artifact.name.startswith("sky1-linux-gnome-desktop-rc-")
    assert len(cleanups) == 1
    record = json.loads((tmp_path / "state.json").read_text())["builds"][artifact.name]
    assert record["status"] == "complete"
    assert record["decisions"]["kernel_version"] == "6.19.0-rc7-sky1-rc"


def test_interrupt_still_cleans_up(tmp_path, cfg, as_root, cleanups) -> None:
    with pytest.raises(KeyboardInterrupt):
        image.build_image(_request(), cfg, steps=[Recorder("10", fail=KeyboardInterrupt())], chroot_source=tmp_path)
    assert len(cleanups) == 1
    record = next(iter(json.loads((tmp_path / "state.json").read_text())["builds"].values()))
    assert record["status"] == "interrupted"


def test_non_root_fails_before_any_step(tmp_path, cfg, monkeypatch, cleanups) -> None:
    monkeypatch.setattr("os.geteuid", lambda: 1000)
    step = Recorder("10")

    with pytest.raises(PrivilegeError):
        image.build_image(_request(), cfg, steps=[step], chroot_source=tmp_path)

    assert not step.ran
    assert cleanups == []
    assert not (tmp_path / "state.json").exists()


def test_missing_chroot_is_a_validation_error(cfg, monkeypatch) -> None:
    monkeypatch.setattr("os.geteuid", lambda: 1000)
    with pytest.raises(ValidationError, match="No chroot found for gnome"):
        image.build_image(_request(), cfg, steps=[])


def test_resolve_chroot_prefers_desktop_tree(tmp_path, cfg) -> None:
    own = tmp_path / "desktop-choice/kde/chroot"
    own.mkdir(parents=True)
    (tmp_path / "chroot").mkdir()
    assert image.resolve_chroot(cfg, BuildRequest.from_strings("kde", "desktop").desktop) == own


def test_resolve_chroot_follows_symlink(tmp_path, cfg) -> None:
    real = tmp_path / "desktop-choice/gnome/chroot"
    real.mkdir(parents=True)
    (tmp_path / "chroot").symlink_to(real)
    desktop = BuildRequest.from_strings("xfce", "desktop").desktop
    assert image.resolve_chroot(cfg, desktop) == real.resolve()


def test_resolve_chroot_legacy_directory(tmp_path, cfg) -> None:
    (tmp_path / "chroot").mkdir()
    desktop = BuildRequest.from_strings("none", "server").desktop
    assert image.resolve_chroot(cfg, desktop) == tmp_path / "chroot"


def test_signals_become_interrupts_and_are_restored() -> None:
    before = signal.getsignal(signal.SIGTERM)
    with image.cleanup_on_signals():
        assert signal.getsignal(signal.SIGTERM) is image._raise_interrupt
        with pytest.raises(KeyboardInterrupt):
            image._raise_interrupt(signal.SIGTERM, None)
    assert signal.getsignal(signal.SIGTERM) == before


def test_skip_compress_from_env() -> None:
    assert image.skip_compress_from_env({"SKIP_COMPRESS": "1"}) is True
    assert image.skip_compress_from_env({"SKIP_COMPRESS": "0"}) is False
    assert image.skip_compress_from_env({}) is False


def test_main_reports_validation_error(capsys, monkeypatch) -> None:
    monkeypatch.setattr(image, "configure_logging", lambda **kw: "log")
    assert image.main(["plasma", "desktop"]) == 1
    assert "Unknown desktop 'plasma'" in capsys.readouterr().err


def test_pipeline_records_failed_step(image_ctx) -> None:
    result = PipelineResult()
    with pytest.raises(RuntimeError):
        run_pipeline(ctx=image_ctx, steps=[Recorder("a"), Recorder("b", fail=RuntimeError("x"))], result=result)
    assert result.ran_steps == ["a"]
    assert result.failed_step == "b"


def test_release_resources_twice(image_ctx, fake_run, monkeypatch) -> None:
    live = {str(image_ctx.mount_dir), str(image_ctx.efi_dir)}
    attached = {"/dev/loop4"}
    fake_run.on("mountpoint", effect=lambda argv: 0 if argv[-1] in live else 1)
    fake_run.on("umount", effect=lambda argv: live.discard(argv[-1]))
    fake_run.on("losetup", "-d", effect=lambda argv: attached.discard(argv[-1]))
    monkeypatch.setattr(loopdev, "is_attached", lambda loop: loop in attached)

    image_ctx.mounts._mounts[:] = [str(image_ctx.mount_dir), str(image_ctx.efi_dir)]
    image_ctx.loop = LoopBinding("/dev/loop4", "/dev/loop4p1", "/dev/loop4p2")
    mount_dir = image_ctx.mount_dir

    release_resources(image_ctx)
    release_resources(image_ctx)

    assert [c[-1] for c in fake_run.ran("umount")] == [str(mount_dir / "boot/efi"), str(mount_dir)]
    assert len(fake_run.ran("losetup", "-d")) == 1
    assert not live and not attached
    assert not mount_dir.exists()
    assert image_ctx.loop is None and image_ctx.mount_dir is None


def test_release_resources_after_partial_failure(image_ctx, fake_run) -> None:
    # nothing acquired beyond the mount dir
    mount_dir = image_ctx.mount_dir
    fake_run.on("mountpoint", returncode=1)

    release_resources(image_ctx)

    assert not fake_run.ran("losetup")
    assert not mount_dir.exists()
