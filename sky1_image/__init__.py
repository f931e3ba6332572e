"""Sky1 Linux image builder.

Turns a live-build chroot into a flashable disk image:
- Loop-backed GPT image with an EFI System Partition and an ext4 root
- Live system converted to an installed one, inside a chroot
- GRUB menu with one entry per supported board, pruned on first boot
- Guaranteed teardown of mounts and loop devices
"""

__all__ = []
