# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``ebsplugin.dockerplugin._script``.
"""

from twisted.python.filepath import FilePath
from twisted.python.usage import UsageError
from twisted.internet.address import UNIXAddress

from zope.interface.verify import verifyObject

from ...common.script import ICommandLineScript
from ...testtools import TestCase
from .._api import DEFAULT_MOUNT_TIMEOUT
from .._script import (
    DEFAULT_SOCKET_PATH, DockerPluginScript, PluginOptions,
    _give_unix_addresses_a_port,
)

ENVIRONMENT = {
    "SOCK_PATH": "/run/env.sock",
    "REGION": "eu-west-1",
    "AVAILABILITY_ZONE": "eu-west-1b",
    "INSTANCE_ID": "i-from-env",
}


class PluginOptionsTests(TestCase):
    """
    Tests for ``PluginOptions``.
    """
    def parse(self, arguments, environ):
        options = PluginOptions(environ=environ)
        options.parseOptions(arguments)
        return options

    def test_defaults(self):
        """
        With nothing on the command line or in the environment, the default
        socket is used and the instance is left to be looked up.
        """
        options = self.parse([], {})
        self.assertEqual(
            (FilePath(DEFAULT_SOCKET_PATH), None, None, None,
             DEFAULT_MOUNT_TIMEOUT),
            (options["socket-path"], options["region"],
             options["availability-zone"], options["instance-id"],
             options["mount-timeout"]),
        )

    def test_environment(self):
        """
        Options not given on the command line are taken from the
        environment.
        """
        options = self.parse([], ENVIRONMENT)
        self.assertEqual(
            (FilePath("/run/env.sock"), "eu-west-1", "eu-west-1b",
             "i-from-env"),
            (options["socket-path"], options["region"],
             options["availability-zone"], options["instance-id"]),
        )

    def test_command_line_wins(self):
        """
        Options given on the command line override the environment.
        """
        options = self.parse(
            ["--socket-path", "/run/flag.sock", "--region", "us-west-2",
             "--availability-zone", "us-west-2c",
             "--instance-id", "i-from-flag"],
            ENVIRONMENT)
        self.assertEqual(
            (FilePath("/run/flag.sock"), "us-west-2", "us-west-2c",
             "i-from-flag"),
            (options["socket-path"], options["region"],
             options["availability-zone"], options["instance-id"]),
        )

    def test_empty_environment_variable(self):
        """
        An empty environment variable counts as unset.
        """
        options = self.parse([], {"REGION": ""})
        self.assertIs(None, options["region"])

    def test_mount_timeout(self):
        """
        ``--mount-timeout`` sets the number of seconds to wait for a mount.
        """
        options = self.parse(["--mount-timeout", "30"], {})
        self.assertEqual(30.0, options["mount-timeout"])

    def test_mount_timeout_positive(self):
        """
        A mount timeout which isn't positive is rejected.
        """
        self.assertRaises(
            UsageError, self.parse, ["--mount-timeout", "0"], {})


class CreateListeningDirectoryTests(TestCase):
    """
    Tests for ``DockerPluginScript._create_listening_directory``.
    """
    def test_creates_private_directory(self):
        """
        A missing directory is created, readable only by its owner.
        """
        directory = self.make_temporary_path().child("plugins")
        DockerPluginScript()._create_listening_directory(directory)
        directory.restat()
        self.assertEqual(
            (True, "rwx------"),
            (directory.isdir(), directory.getPermissions().shorthand()),
        )

    def test_existing_directory_unchanged(self):
        """
        The permissions of an existing directory are left alone.
        """
        directory = self.make_temporary_directory()
        directory.chmod(0o755)
        DockerPluginScript()._create_listening_directory(directory)
        directory.restat()
        self.assertEqual("rwxr-xr-x", directory.getPermissions().shorthand())


class DockerPluginScriptTests(TestCase):
    """
    Tests for ``DockerPluginScript``.
    """
    def test_interface(self):
        """
        ``DockerPluginScript`` can be run by ``ScriptRunner``.
        """
        self.assertTrue(verifyObject(ICommandLineScript, DockerPluginScript()))

    def test_unix_address_port(self):
        """
        Once the plugin has patched them, Unix socket addresses have the
        host and port twisted.web expects of a TCP address.
        """
        _give_unix_addresses_a_port()
        address = UNIXAddress(b"/run/docker/plugins/pl-ebs.sock")
        self.assertEqual((b"127.0.0.1", 0), (address.host, address.port))
