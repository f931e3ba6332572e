from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from . import livebuild
from .build_config import load_build_config
from .errors import BuildError
from .image import build_image, require_root, skip_compress_from_env
from .logging_utils import configure_logging
from .models import BuildRequest, OutputFormat, parse_choice

logger = logging.getLogger(__name__)


def run_build(
    *,
    desktop: str,
    loadout: str,
    fmt: str,
    track: str,
    clean: bool,
    config_path: Optional[str],
    log_path: Optional[str],
) -> None:
    cfg = load_build_config(config_path)
    configure_logging(log_path=log_path or cfg.log_path)

    request = BuildRequest.from_strings(desktop, loadout, track, image_size_gb=cfg.image_size_gb)
    output = parse_choice(OutputFormat, fmt, what="format")
    livebuild.check_layout(cfg, request)

    logger.info(
        "=== Building Sky1 Linux: desktop=%s loadout=%s format=%s track=%s ===",
        request.desktop.value,
        request.loadout.value,
        output.value,
        request.track.value,
    )

    if output is OutputFormat.IMAGE:
        require_root()

    if clean:
        livebuild.clean(cfg, request.desktop)

    livebuild.setup_chroot_symlink(cfg, request.desktop)
    livebuild.apply_desktop(cfg, request.desktop)
    livebuild.apply_loadout(cfg, request.loadout)

    if output is OutputFormat.ISO:
        livebuild.build_iso(cfg, request)
    else:
        livebuild.ensure_chroot(cfg, request.desktop)
        build_image(request, cfg, skip_compress=skip_compress_from_env())

    logger.info("Build finished")


def main(argv: Optional[Sequence[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="sky1-build", description="Build a Sky1 Linux ISO or disk image")
    p.add_argument("desktop", nargs="?", default="gnome", help="gnome | kde | xfce | none")
    p.add_argument("loadout", nargs="?", default="desktop", help="minimal | desktop | server | developer")
    p.add_argument("format", nargs="?", default="iso", help="iso | image")
    p.add_argument("clean", nargs="?", default=None, choices=["clean"], help="Purge the previous build first")
    p.add_argument("--track", default="main", help="main | latest | rc | next")
    p.add_argument("--config", default=None, help="YAML build config")
    p.add_argument("--log", default=None)

    args = p.parse_args(argv)

    try:
        run_build(
            desktop=args.desktop,
            loadout=args.loadout,
            fmt=args.format,
            track=args.track,
            clean=args.clean == "clean",
            config_path=args.config,
            log_path=args.log,
        )
    except BuildError as e:
        logger.exception("Build failed")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.error("Build interrupted")
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
