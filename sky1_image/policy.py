"""Which operations may fail without stopping the build.

Operations are named; anything not in the table propagates.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Policy(enum.Enum):
    PROPAGATE = "propagate"
    LOG_AND_CONTINUE = "log-and-continue"


OPERATION_POLICY: Dict[str, Policy] = {
    # disk image pipeline
    "remove_live_packages": Policy.LOG_AND_CONTINUE,
    "remove_live_user": Policy.LOG_AND_CONTINUE,
    "dconf_update": Policy.LOG_AND_CONTINUE,
    "enable_firstboot_service": Policy.PROPAGATE,
    "install_image_packages": Policy.PROPAGATE,
    "install_firstboot_wizard": Policy.PROPAGATE,
    # chroot updater
    "remove_firmware_hooks": Policy.LOG_AND_CONTINUE,
    "remove_deprecated_dkms": Policy.LOG_AND_CONTINUE,
    # live-build front-end
    "lb_clean": Policy.LOG_AND_CONTINUE,
    # first boot
    "expand_rootfs": Policy.LOG_AND_CONTINUE,
    "generate_machine_id": Policy.LOG_AND_CONTINUE,
    "generate_ssh_keys": Policy.LOG_AND_CONTINUE,
    "prune_boot_menu": Policy.LOG_AND_CONTINUE,
    "apply_preconfig": Policy.LOG_AND_CONTINUE,
    "write_firstboot_marker": Policy.PROPAGATE,
}


def policy_for(op: str) -> Policy:
    return OPERATION_POLICY.get(op, Policy.PROPAGATE)


def guarded(op: str, fn: Callable[[], T]) -> Optional[T]:
    """Run fn under the policy registered for op.

    LOG_AND_CONTINUE logs any Exception at warning, with its traceback, and
    returns None. Under PROPAGATE every error is re-raised.
    """

    try:
        return fn()
    except Exception as e:
        if policy_for(op) is Policy.PROPAGATE:
            raise
        logger.warning("Non-fatal: %s failed: %s", op, e, exc_info=True)
        return None
