# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Testing utilities for ``ebsplugin.node``.
"""

from zope.interface import implementer

from .blockdevice_manager import (
    IBlockDeviceManager, MakeFilesystemError, MountError, MountInfo,
    UnmountError,
)


@implementer(IBlockDeviceManager)
class FakeBlockDeviceManager(object):
    """
    An ``IBlockDeviceManager`` which keeps filesystems and mounts in memory.

    Mounting requires the mountpoint directory to exist, as it does for the
    real thing.

    :ivar filesystems: Maps block device ``FilePath``s to filesystem types.
    :ivar mounts: The current ``MountInfo``s.
    :ivar calls: Every call made, as tuples of method name and arguments.
    :ivar failures: Maps method names to exceptions those methods raise.
    """
    def __init__(self, filesystems=None, mounts=()):
        self.filesystems = dict(filesystems or {})
        self.mounts = list(mounts)
        self.calls = []
        self.failures = {}

    def _record(self, *call):
        self.calls.append(call)
        if call[0] in self.failures:
            raise self.failures[call[0]]

    def call_names(self):
        return [call[0] for call in self.calls]

    def make_filesystem(self, blockdevice, filesystem):
        self._record("make_filesystem", blockdevice, filesystem)
        if any(mount.blockdevice == blockdevice for mount in self.mounts):
            raise MakeFilesystemError(
                blockdevice=blockdevice,
                source_message="{} is mounted".format(blockdevice.path))
        self.filesystems[blockdevice] = filesystem

    def get_filesystem_type(self, blockdevice):
        self._record("get_filesystem_type", blockdevice)
        return self.filesystems.get(blockdevice)

    def mount(self, blockdevice, mountpoint, filesystem):
        self._record("mount", blockdevice, mountpoint, filesystem)
        if not mountpoint.isdir():
            raise MountError(
                blockdevice=blockdevice, mountpoint=mountpoint,
                source_message="mount point does not exist")
        if self.filesystems.get(blockdevice) != filesystem:
            raise MountError(
                blockdevice=blockdevice, mountpoint=mountpoint,
                source_message="wrong fs type")
        self.mounts.append(
            MountInfo(blockdevice=blockdevice, mountpoint=mountpoint))

    def unmount(self, mountpoint):
        self._record("unmount", mountpoint)
        remaining = [
            mount for mount in self.mounts if mount.mountpoint != mountpoint]
        if len(remaining) == len(self.mounts):
            raise UnmountError(
                mountpoint=mountpoint,
                source_message="{}: not mounted".format(mountpoint.path))
        self.mounts = remaining

    def get_mounts(self):
        return list(self.mounts)
