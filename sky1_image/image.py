from __future__ import annotations

import argparse
import contextlib
import logging
import os
import signal
import sys
from pathlib import Path
from types import FrameType
from typing import Any, Dict, Iterator, Optional, Sequence

from .build_config import BuildConfig, load_build_config
from .build_state import (
    ensure_build_defaults,
    load_build_state,
    mark_completed,
    record_error,
    save_build_state,
    start_build,
)
from .context import ImageCtx, release_resources
from .errors import BuildError, PrivilegeError, ValidationError
from .logging_utils import configure_logging
from .models import BuildRequest, Desktop
from .pipeline import PipelineResult, Step, run_pipeline
from .steps import image_steps

logger = logging.getLogger(__name__)

DEFAULT_BUILD_CONFIG = "build_config.yaml"
CLEANUP_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def require_root(action: str = "Disk image builds") -> None:
    if os.geteuid() != 0:
        raise PrivilegeError(f"{action} require root", hint="Run with sudo.")


def resolve_chroot(cfg: BuildConfig, desktop: Desktop) -> Path:
    """Pick the source tree: the desktop's own chroot, else the live-build symlink, else a legacy dir."""

    own = cfg.chroot_dir(desktop.value)
    if own.is_dir():
        return own

    link = cfg.build_dir / "chroot"
    if link.is_symlink() and link.is_dir():
        target = link.resolve()
        logger.info("Using chroot via symlink: %s", target)
        return target

    if link.is_dir():
        logger.warning(
            "Using legacy 'chroot' directory; consider 'sky1-build %s desktop iso' for an isolated chroot",
            desktop.value,
        )
        return link

    raise ValidationError(
        f"No chroot found for {desktop.value}",
        hint=f"Run 'sky1-build {desktop.value} desktop iso' first to create the chroot.",
    )


def _raise_interrupt(signum: int, frame: Optional[FrameType]) -> None:
    raise KeyboardInterrupt()


@contextlib.contextmanager
def cleanup_on_signals() -> Iterator[None]:
    """Turn termination signals into KeyboardInterrupt so `finally` blocks still run."""

    previous = {s: signal.signal(s, _raise_interrupt) for s in CLEANUP_SIGNALS}
    try:
        yield
    finally:
        for s, handler in previous.items():
            signal.signal(s, handler)


def build_image(
    request: BuildRequest,
    cfg: BuildConfig,
    *,
    skip_compress: bool = False,
    state_path: Optional[str] = None,
    steps: Optional[Sequence[Step]] = None,
    chroot_source: Optional[Path] = None,
) -> Path:
    """Build one disk image; loop devices and mounts are released on every exit path."""

    source = chroot_source if chroot_source is not None else resolve_chroot(cfg, request.desktop)
    require_root()

    image_path = cfg.output_dir / request.image_name()
    logger.info("=== Building Sky1 Linux Disk Image ===")
    logger.info(
        "Desktop=%s Loadout=%s Track=%s Chroot=%s Size=%dGB Output=%s",
        request.desktop.value,
        request.loadout.value,
        request.track.value,
        source,
        request.image_size_gb,
        image_path,
    )

    state_path = state_path or cfg.state_path
    state = ensure_build_defaults(load_build_state(state_path))
    record = start_build(
        state,
        key=image_path.name,
        request={
            "desktop": request.desktop.value,
            "loadout": request.loadout.value,
            "track": request.track.value,
            "image_size_gb": request.image_size_gb,
        },
    )

    ctx = ImageCtx(
        request=request,
        cfg=cfg,
        chroot_source=source,
        image_path=image_path,
        skip_compress=skip_compress,
    )
    result = PipelineResult()

    try:
        with cleanup_on_signals(), contextlib.ExitStack() as stack:
            stack.callback(release_resources, ctx)
            run_pipeline(
                ctx=ctx,
                steps=steps if steps is not None else image_steps(),
                on_step_done=lambda step_id: mark_completed(record, step_id),
                result=result,
            )
    except BaseException as e:
        record["status"] = "interrupted" if isinstance(e, KeyboardInterrupt) else "failed"
        record_error(record, step_id=result.failed_step, error=str(e) or type(e).__name__)
        raise
    else:
        record["status"] = "complete"
    finally:
        record["decisions"] = _jsonable(ctx.decisions)
        save_build_state(state_path, state)

    assert ctx.artifact is not None
    logger.info("=== Disk Image Complete: %s ===", ctx.artifact)
    return ctx.artifact


def _jsonable(decisions: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (str(v) if isinstance(v, Path) else v) for k, v in decisions.items()}


def skip_compress_from_env(environ=os.environ) -> bool:
    return environ.get("SKIP_COMPRESS", "") not in ("", "0")


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="sky1-build-image", description="Build a Sky1 Linux raw disk image from a chroot")
    p.add_argument("desktop", nargs="?", default="gnome")
    p.add_argument("loadout", nargs="?", default="desktop")
    p.add_argument("track", nargs="?", default="main")
    p.add_argument("--config", default=None, help="YAML build config")
    p.add_argument("--size", type=int, default=None, help="Image size in GB")
    p.add_argument("--log", default=None, help="Path to build log")

    args = p.parse_args(argv)

    try:
        cfg = load_build_config(args.config)
        configure_logging(log_path=args.log or cfg.log_path)
        request = BuildRequest.from_strings(
            args.desktop,
            args.loadout,
            args.track,
            image_size_gb=args.size or cfg.image_size_gb,
        )
        build_image(request, cfg, skip_compress=skip_compress_from_env())
    except BuildError as e:
        logger.exception("Image build failed")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.error("Image build interrupted")
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
