# -*- test-case-name: ebsplugin.node.test.test_blockdevice_manager -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Formatting, inspecting and mounting local block devices with the system's own
tools.
"""

import psutil

from zope.interface import Interface, implementer

from pyrsistent import PClass, field

from twisted.python.filepath import FilePath

from ..common.process import ProcessFailed, run_process

# blkid exits with this status, printing nothing, when the device has no
# TYPE tag; i.e. there is no filesystem on it.
_BLKID_NO_TAG = 2


class MountFailure(Exception):
    """
    A command manipulating a filesystem or mount failed.

    :ivar unicode source_message: The output of the failed command.
    """
    def __init__(self, source_message, *args):
        Exception.__init__(self, source_message, *args)
        self.source_message = source_message

    def _describe(self):
        raise NotImplementedError()

    def __str__(self):
        return "{}: {}".format(self._describe(), self.source_message.strip())


class FilesystemTypeError(MountFailure):
    """
    ``blkid`` couldn't tell what is on ``blockdevice``.
    """
    def __init__(self, blockdevice, source_message):
        MountFailure.__init__(self, source_message, blockdevice)
        self.blockdevice = blockdevice

    def _describe(self):
        return "Reading the filesystem type of {} failed".format(
            self.blockdevice.path)


class MakeFilesystemError(MountFailure):
    """
    ``mkfs`` failed on ``blockdevice``.
    """
    def __init__(self, blockdevice, source_message):
        MountFailure.__init__(self, source_message, blockdevice)
        self.blockdevice = blockdevice

    def _describe(self):
        return "Formatting {} failed".format(self.blockdevice.path)


class MountError(MountFailure):
    """
    ``blockdevice`` couldn't be mounted at ``mountpoint``.
    """
    def __init__(self, blockdevice, mountpoint, source_message):
        MountFailure.__init__(self, source_message, blockdevice, mountpoint)
        self.blockdevice = blockdevice
        self.mountpoint = mountpoint

    def _describe(self):
        return "Mounting {} at {} failed".format(
            self.blockdevice.path, self.mountpoint.path)


class UnmountError(MountFailure):
    """
    ``umount`` of ``mountpoint`` failed.
    """
    def __init__(self, mountpoint, source_message):
        MountFailure.__init__(self, source_message, mountpoint)
        self.mountpoint = mountpoint

    def _describe(self):
        return "Unmounting {} failed".format(self.mountpoint.path)


class MountInfo(PClass):
    """
    One row of the live mount table.

    :ivar FilePath blockdevice: What is mounted.
    :ivar FilePath mountpoint: Where it is mounted.
    """
    blockdevice = field(type=FilePath, mandatory=True)
    mountpoint = field(type=FilePath, mandatory=True)


class IBlockDeviceManager(Interface):
    """
    The operating system operations needed to put a filesystem on a block
    device and mount it.

    All of them block; the failures each raises are all ``MountFailure``
    subclasses carrying the command's output.  A command killed by a signal
    counts as failed even if it did its work.
    """

    def make_filesystem(blockdevice, filesystem):
        """
        Create a ``filesystem`` filesystem (e.g. ``u"ext4"``) on
        ``blockdevice``, destroying whatever was there.

        :raises: ``MakeFilesystemError``.
        """

    def get_filesystem_type(blockdevice):
        """
        :param FilePath blockdevice: The device to inspect.

        :raises: ``FilesystemTypeError``.
        :returns: The filesystem type as ``unicode``, or ``None`` if the
            device has no filesystem.
        """

    def mount(blockdevice, mountpoint, filesystem):
        """
        Mount ``blockdevice``, which has a ``filesystem`` filesystem, at the
        directory ``mountpoint``.

        :raises: ``MountError``.
        """

    def unmount(mountpoint):
        """
        Unmount whatever is mounted at ``mountpoint``.

        :raises: ``UnmountError``.
        """

    def get_mounts():
        """
        :returns: An iterable of ``MountInfo`` for every device mount in the
            kernel's live mount table.
        """


def _run(command, error):
    """
    Run ``command``, turning its failure into a ``MountFailure``.

    :param error: Called with the command's output if it fails, returning
        the exception to raise.
    :return: The command's output.
    """
    try:
        return run_process(command).output
    except ProcessFailed as e:
        raise error(e.output)


@implementer(IBlockDeviceManager)
class BlockDeviceManager(PClass):
    """
    ``IBlockDeviceManager`` using ``mkfs``, ``blkid``, ``mount`` and
    ``umount``, and ``psutil`` for the mount table.
    """
    def make_filesystem(self, blockdevice, filesystem):
        _run(["mkfs", "-t", filesystem, blockdevice.path],
             lambda output: MakeFilesystemError(
                 blockdevice=blockdevice, source_message=output))

    def get_filesystem_type(self, blockdevice):
        command = [
            "blkid", "-p", "-u", "filesystem", "-o", "value", "-s", "TYPE",
            blockdevice.path,
        ]
        try:
            output = run_process(command).output
        except ProcessFailed as e:
            # A device blkid can't read at all also exits with 2, but says
            # why on stderr.
            if e.returncode == _BLKID_NO_TAG and not e.output:
                return None
            raise FilesystemTypeError(
                blockdevice=blockdevice, source_message=e.output)
        return output.strip() or None

    def mount(self, blockdevice, mountpoint, filesystem):
        _run(["mount", "-t", filesystem, blockdevice.path, mountpoint.path],
             lambda output: MountError(
                 blockdevice=blockdevice, mountpoint=mountpoint,
                 source_message=output))

    def unmount(self, mountpoint):
        _run(["umount", mountpoint.path],
             lambda output: UnmountError(
                 mountpoint=mountpoint, source_message=output))

    def get_mounts(self):
        return [
            MountInfo(
                blockdevice=FilePath(partition.device),
                mountpoint=FilePath(partition.mountpoint))
            for partition in psutil.disk_partitions()
        ]
