# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``ebsplugin.node.filesystem``.
"""

from twisted.python.filepath import FilePath

from ..blockdevice_manager import MakeFilesystemError, MountError, MountInfo
from ..filesystem import (
    FILESYSTEM_TYPE, FilesystemProvisioner, is_mounted, mountpoint_of,
)
from ..testtools import FakeBlockDeviceManager
from ...testtools import TestCase

DEVICE = FilePath("/dev/nvme1n1")


class FilesystemProvisionerTests(TestCase):
    """
    Tests for ``FilesystemProvisioner.provision``.
    """
    def setUp(self):
        super(FilesystemProvisionerTests, self).setUp()
        self.root = self.make_temporary_directory()
        self.mountpoint = self.root.child("vol-0abc")
        self.manager = FakeBlockDeviceManager()
        self.provisioner = FilesystemProvisioner(manager=self.manager)

    def test_unformatted(self):
        """
        A device without a filesystem is formatted once with the fixed
        filesystem type and mounted at the mountpoint, which is created.
        """
        result = self.provisioner.provision(DEVICE, self.mountpoint)
        self.assertEqual(
            (self.mountpoint,
             ["get_filesystem_type", "make_filesystem", "mount"],
             FILESYSTEM_TYPE,
             [MountInfo(blockdevice=DEVICE, mountpoint=self.mountpoint)]),
            (result, self.manager.call_names(),
             self.manager.get_filesystem_type(DEVICE),
             self.manager.get_mounts()),
        )
        self.assertTrue(self.mountpoint.isdir())

    def test_residual_contents_cleared(self):
        """
        Anything left in the mountpoint directory is removed after mounting
        a freshly formatted device.
        """
        self.mountpoint.makedirs()
        self.mountpoint.child("stale").setContent(b"old")
        self.mountpoint.child("lost+found").makedirs()
        self.provisioner.provision(DEVICE, self.mountpoint)
        self.assertEqual([], self.mountpoint.children())

    def test_idempotent(self):
        """
        Provisioning a device which is already mounted at the mountpoint
        neither formats nor mounts anything.
        """
        self.provisioner.provision(DEVICE, self.mountpoint)
        self.mountpoint.child("data").setContent(b"keep")
        del self.manager.calls[:]
        result = self.provisioner.provision(DEVICE, self.mountpoint)
        self.assertEqual(
            (self.mountpoint, ["get_filesystem_type"], b"keep"),
            (result, self.manager.call_names(),
             self.mountpoint.child("data").getContent()),
        )

    def test_existing_filesystem(self):
        """
        A device with a filesystem is mounted without being formatted, using
        its own filesystem type.
        """
        self.manager.filesystems[DEVICE] = "ext4"
        self.provisioner.provision(DEVICE, self.mountpoint)
        self.assertEqual(
            [("get_filesystem_type", DEVICE),
             ("mount", DEVICE, self.mountpoint, "ext4")],
            self.manager.calls,
        )

    def test_mounted_elsewhere(self):
        """
        A device mounted somewhere else is unmounted from there and mounted
        at the mountpoint.
        """
        old = self.root.child("old")
        old.makedirs()
        self.manager.filesystems[DEVICE] = FILESYSTEM_TYPE
        self.manager.mounts.append(
            MountInfo(blockdevice=DEVICE, mountpoint=old))
        self.provisioner.provision(DEVICE, self.mountpoint)
        self.assertEqual(
            (["get_filesystem_type", "unmount", "mount"],
             [MountInfo(blockdevice=DEVICE, mountpoint=self.mountpoint)]),
            (self.manager.call_names(), self.manager.get_mounts()),
        )

    def test_format_failure(self):
        """
        A formatting failure is raised and nothing is mounted.
        """
        self.manager.failures["make_filesystem"] = MakeFilesystemError(
            blockdevice=DEVICE, source_message="mkfs: bad")
        self.assertRaises(
            MakeFilesystemError,
            self.provisioner.provision, DEVICE, self.mountpoint)
        self.assertEqual([], self.manager.get_mounts())

    def test_mount_failure(self):
        """
        A mount failure is raised unchanged and not retried.
        """
        self.manager.filesystems[DEVICE] = FILESYSTEM_TYPE
        self.manager.failures["mount"] = MountError(
            blockdevice=DEVICE, mountpoint=self.mountpoint,
            source_message="mount: busy")
        self.assertRaises(
            MountError, self.provisioner.provision, DEVICE, self.mountpoint)
        self.assertEqual(1, self.manager.call_names().count("mount"))


class MountTableTests(TestCase):
    """
    Tests for ``mountpoint_of`` and ``is_mounted``.
    """
    def setUp(self):
        super(MountTableTests, self).setUp()
        self.manager = FakeBlockDeviceManager(mounts=[
            MountInfo(blockdevice=DEVICE, mountpoint=FilePath("/mnt/a"))])

    def test_mountpoint_of(self):
        """
        ``mountpoint_of`` returns where a device is mounted, or ``None``.
        """
        self.assertEqual(
            (FilePath("/mnt/a"), None),
            (mountpoint_of(self.manager, DEVICE),
             mountpoint_of(self.manager, FilePath("/dev/nvme2n1"))),
        )

    def test_is_mounted(self):
        """
        ``is_mounted`` checks the live mount table rather than the
        filesystem.
        """
        self.assertEqual(
            (True, False),
            (is_mounted(self.manager, FilePath("/mnt/a")),
             is_mounted(self.manager, FilePath("/mnt/b"))),
        )
