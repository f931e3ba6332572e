from .step_10_create_image import CreateImageStep
from .step_20_format_mount import FormatMountStep
from .step_30_populate_rootfs import PopulateRootfsStep
from .step_40_transform_system import TransformSystemStep
from .step_50_configure_boot import ConfigureBootStep
from .step_60_scrub_identity import ScrubIdentityStep
from .step_70_unmount import UnmountStep
from .step_80_compress import CompressStep

__all__ = [
    "CreateImageStep",
    "FormatMountStep",
    "PopulateRootfsStep",
    "TransformSystemStep",
    "ConfigureBootStep",
    "ScrubIdentityStep",
    "UnmountStep",
    "CompressStep",
]


def image_steps():
    """The disk image pipeline, in the only order it may run."""

    return [
        CreateImageStep(),
        FormatMountStep(),
        PopulateRootfsStep(),
        TransformSystemStep(),
        ConfigureBootStep(),
        ScrubIdentityStep(),
        UnmountStep(),
        CompressStep(),
    ]
