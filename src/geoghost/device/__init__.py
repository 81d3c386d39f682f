"""Device listing."""

from .locator import DeviceLocator, normalize_device, parse_listing

__all__ = ["DeviceLocator", "normalize_device", "parse_listing"]
