# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Local block devices, filesystems and mounts.
"""

__all__ = [
    "BlockDeviceManager", "DeviceLocator", "DeviceNotFound",
    "FilesystemProvisioner", "IBlockDeviceManager", "MountFailure",
]

from .blockdevice_manager import (
    BlockDeviceManager, IBlockDeviceManager, MountFailure,
)
from .device import DeviceLocator, DeviceNotFound
from .filesystem import FilesystemProvisioner
