"""Privileged tunneld control."""

from .controller import REJECTION_PATTERN, PrivilegedDaemonController

__all__ = ["PrivilegedDaemonController", "REJECTION_PATTERN"]
