"""Error taxonomy for the image pipeline.

Every fatal condition raised by this package derives from ``BuildError`` so the
CLI entry points can turn it into a diagnostic and a non-zero exit.
"""

from __future__ import annotations

from typing import Optional, Sequence


class BuildError(RuntimeError):
    """Base class for pipeline failures."""

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.hint = hint

    def __str__(self) -> str:
        msg = super().__str__()
        if self.hint:
            return f"{msg}\nHint: {self.hint}"
        return msg


class ValidationError(BuildError):
    """Bad input: unknown enum value, missing directory."""


class PrivilegeError(BuildError):
    """The operation needs root and we do not have it."""


class ResourceError(BuildError):
    """A host resource (loop device, partition, mount, disk space) could not be acquired."""


class DeviceTimeoutError(ResourceError):
    """A block device did not appear within the allowed wait."""

    def __init__(self, message: str, *, waited_s: float, missing: Sequence[str]) -> None:
        super().__init__(message)
        self.waited_s = waited_s
        self.missing = list(missing)


class IntegrityError(BuildError):
    """A boot artifact the image cannot work without is absent."""


class CommandError(BuildError):
    """An external command exited non-zero."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        detail = f"\n{stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Command failed ({returncode}): {' '.join(self.argv)}{detail}")
