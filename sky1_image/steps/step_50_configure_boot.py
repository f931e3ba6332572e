from __future__ import annotations

import logging

from ..context import ImageCtx
from ..lib.bootloader import install_grub_efi, render_grub_cfg, stage_dtbs, write_grub_cfg
from ..lib.fstab import fs_uuid, image_fstab
from ..lib.kernel import resolve_kernel

logger = logging.getLogger(__name__)


class ConfigureBootStep:
    step_id = "50_configure_boot"
    title = "Generating fstab and bootloader configuration"

    def run(self, ctx: ImageCtx) -> None:
        if ctx.loop is None:
            raise RuntimeError("No loop device attached")
        root = ctx.target_root

        efi_uuid = fs_uuid(ctx.loop.esp_part)
        root_uuid = fs_uuid(ctx.loop.root_part)

        fstab = root / "etc/fstab"
        fstab.parent.mkdir(parents=True, exist_ok=True)
        fstab.write_text(image_fstab(root_uuid=root_uuid, efi_uuid=efi_uuid), encoding="utf-8")
        logger.info("Wrote fstab (root=%s efi=%s)", root_uuid, efi_uuid)

        install_grub_efi(efi_dir=ctx.efi_dir, grub_binary=ctx.cfg.grub_efi_path)

        kernel = resolve_kernel(root / "boot", ctx.request.track)
        missing = stage_dtbs(target_root=root, kernel_version=kernel)

        write_grub_cfg(efi_dir=ctx.efi_dir, contents=render_grub_cfg(kernel_version=kernel, root_uuid=root_uuid))

        ctx.decisions.update(
            {
                "root_uuid": root_uuid,
                "efi_uuid": efi_uuid,
                "kernel_version": kernel,
                "missing_dtbs": [b.dtb for b in missing],
            }
        )
