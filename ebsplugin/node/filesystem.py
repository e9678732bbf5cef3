# -*- test-case-name: ebsplugin.node.test.test_filesystem -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Put a filesystem on a block device and mount it where it belongs.
"""

from pyrsistent import PClass, field

from ._logging import (
    PROVISION_FILESYSTEM, FILESYSTEM_DETECTED, MOVING_MOUNT, ALREADY_MOUNTED,
)

# Volumes are always formatted with this filesystem.
FILESYSTEM_TYPE = "xfs"


def mountpoint_of(manager, blockdevice):
    """
    :param IBlockDeviceManager manager: Used to read the live mount table.
    :param FilePath blockdevice: A block device.

    :return: The ``FilePath`` ``blockdevice`` is mounted at, or ``None``.
    """
    for mount in manager.get_mounts():
        if mount.blockdevice == blockdevice:
            return mount.mountpoint
    return None


def is_mounted(manager, mountpoint):
    """
    :return: ``True`` if something is mounted at ``mountpoint`` according to
        the live mount table.
    """
    return any(
        mount.mountpoint == mountpoint for mount in manager.get_mounts())


def _ensure_directory(path):
    path.makedirs(ignoreExistingDirectory=True)


class FilesystemProvisioner(PClass):
    """
    Make sure a block device has a filesystem and is mounted at exactly one
    path.  Everything here blocks; run it in a thread.

    :ivar manager: The ``IBlockDeviceManager`` used to act on the system.
    """
    manager = field(mandatory=True)

    def provision(self, blockdevice, mountpoint):
        """
        Format ``blockdevice`` if it has no filesystem, then mount it at
        ``mountpoint``, moving an existing mount elsewhere if necessary.
        Running this again once it has succeeded changes nothing.

        :param FilePath blockdevice: The block device of the volume.
        :param FilePath mountpoint: Where the volume belongs.

        :raise MountFailure: If any command fails.
        :return: ``mountpoint``.
        """
        manager = self.manager
        with PROVISION_FILESYSTEM(
                device=blockdevice, mountpoint=mountpoint):
            filesystem = manager.get_filesystem_type(blockdevice)
            FILESYSTEM_DETECTED.log(
                device=blockdevice, filesystem_type=filesystem)
            if filesystem is None:
                filesystem = FILESYSTEM_TYPE
                manager.make_filesystem(blockdevice, filesystem)
                _ensure_directory(mountpoint)
                manager.mount(blockdevice, mountpoint, filesystem)
                # The new filesystem should be empty.
                for child in mountpoint.children():
                    child.remove()

            current = mountpoint_of(manager, blockdevice)
            if current is None:
                _ensure_directory(mountpoint)
                manager.mount(blockdevice, mountpoint, filesystem)
            elif current != mountpoint:
                MOVING_MOUNT.log(
                    device=blockdevice, old_mountpoint=current,
                    mountpoint=mountpoint,
                )
                manager.unmount(current)
                _ensure_directory(mountpoint)
                manager.mount(blockdevice, mountpoint, filesystem)
            else:
                ALREADY_MOUNTED.log(
                    device=blockdevice, mountpoint=mountpoint)
        return mountpoint
