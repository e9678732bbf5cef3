# -*- test-case-name: ebsplugin.dockerplugin.test.test_script -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Command to start up the Docker plugin.
"""
import os
from os import umask
from stat import S_IRUSR, S_IWUSR, S_IXUSR

from twisted.python.usage import Options, UsageError
from twisted.internet.endpoints import serverFromString
from twisted.application.internet import StreamServerEndpointService
from twisted.web.server import Site
from twisted.python.filepath import FilePath
from twisted.internet.address import UNIXAddress

from eliot import log_message

from zope.interface import implementer

from .. import MOUNT_ROOT
from ..aws import (
    AttachmentController, EC2VolumeAPI, InUseScanner, ThreadedEC2VolumeAPI,
    aws_session, resolve_identity,
)
from ..common import in_threadpool
from ..common.script import (
    ICommandLineScript, standard_options, ScriptRunner, main_for_service)
from ..node import (
    BlockDeviceManager, DeviceLocator, FilesystemProvisioner,
)
from ._api import VolumePlugin, DEFAULT_MOUNT_TIMEOUT
from ._orchestrator import MountOrchestrator

DEFAULT_SOCKET_PATH = "/run/docker/plugins/pl-ebs.sock"

# Option name -> environment variable used when the option isn't given.
_ENVIRONMENT = [
    ("socket-path", "SOCK_PATH"),
    ("region", "REGION"),
    ("availability-zone", "AVAILABILITY_ZONE"),
    ("instance-id", "INSTANCE_ID"),
]


@standard_options
class PluginOptions(Options):
    """
    Command-line options for the Docker plugin.

    Options not given on the command line are taken from the environment.
    The region, availability zone and instance identifier are looked up in
    the instance metadata service if they're still missing.
    """
    optParameters = [
        ["socket-path", None, None,
         "The Unix socket to listen on. "
         "[default: $SOCK_PATH or {}]".format(DEFAULT_SOCKET_PATH)],
        ["region", None, None,
         "The AWS region. [default: $REGION or instance metadata]"],
        ["availability-zone", None, None,
         "The availability zone of this instance. "
         "[default: $AVAILABILITY_ZONE or instance metadata]"],
        ["instance-id", None, None,
         "The EC2 instance identifier of this instance. "
         "[default: $INSTANCE_ID or instance metadata]"],
        ["mount-timeout", None, DEFAULT_MOUNT_TIMEOUT,
         "Seconds to wait for a volume to mount.", float],
    ]

    def __init__(self, environ=None):
        Options.__init__(self)
        if environ is None:
            environ = os.environ
        self._environ = environ

    def postOptions(self):
        for option, variable in _ENVIRONMENT:
            if not self[option]:
                self[option] = self._environ.get(variable) or None
        if self["socket-path"] is None:
            self["socket-path"] = DEFAULT_SOCKET_PATH
        self["socket-path"] = FilePath(self["socket-path"])
        if self["mount-timeout"] <= 0:
            raise UsageError("--mount-timeout must be positive")


def _give_unix_addresses_a_port():
    """
    Klein and twisted.web read the host and port of the address a request
    arrived on, which Unix socket addresses lack
    (https://twistedmatrix.com/trac/ticket/5406).  Give every one a
    loopback address instead.
    """
    UNIXAddress.port = 0
    UNIXAddress.host = b"127.0.0.1"


@implementer(ICommandLineScript)
class DockerPluginScript(object):
    """
    Start the Docker plugin.
    """
    def _create_listening_directory(self, directory_path):
        """
        Create the parent directory for the Unix socket if it doesn't exist,
        readable only by its owner.  An existing directory is shared with
        other plugins and left alone.

        :param FilePath directory_path: The directory to create.
        """
        original_umask = umask(0)
        try:
            if not directory_path.exists():
                directory_path.makedirs()
                directory_path.chmod(S_IRUSR | S_IWUSR | S_IXUSR)
        finally:
            umask(original_umask)

    def _build_plugin(self, reactor, options, node):
        """
        Wire up the plugin for the local instance.

        :param NodeIdentity node: The local instance.

        :return: A ``VolumePlugin``.
        """
        threadpool = reactor.getThreadPool()
        run_blocking = in_threadpool(reactor, threadpool)
        session = aws_session(node.region)
        ec2_client = session.client("ec2")
        ec2 = ThreadedEC2VolumeAPI(
            _reactor=reactor, _sync=EC2VolumeAPI(client=ec2_client),
            _threadpool=threadpool,
        )
        scanner = InUseScanner(
            session.client("ecs"), ec2_client, run_blocking)
        block_device_manager = BlockDeviceManager()
        mount_root = FilePath(MOUNT_ROOT)
        orchestrator = MountOrchestrator(
            attachments=AttachmentController(reactor, ec2, scanner, node),
            locator=DeviceLocator(reactor),
            provisioner=FilesystemProvisioner(manager=block_device_manager),
            run_blocking=run_blocking,
            mount_root=mount_root,
        )
        return VolumePlugin(
            reactor, orchestrator, ec2, node, block_device_manager,
            run_blocking, mount_root, options["mount-timeout"],
        )

    def main(self, reactor, options):
        socket_path = options["socket-path"]
        d = resolve_identity({
            "region": options["region"],
            "zone": options["availability-zone"],
            "instance_id": options["instance-id"],
        })

        def serve(node):
            log_message(
                message_type="ebsplugin:dockerplugin:starting",
                region=node.region, zone=node.zone,
                instance_id=node.instance_id, socket_path=socket_path.path,
            )
            plugin = self._build_plugin(reactor, options, node)
            self._create_listening_directory(socket_path.parent())
            _give_unix_addresses_a_port()

            # This is how to run a REST API on a Unix socket.
            endpoint = serverFromString(
                reactor,
                "unix:{}:mode=600:lockfile=1".format(socket_path.path))
            service = StreamServerEndpointService(
                endpoint, Site(plugin.app.resource()))
            return main_for_service(reactor, service)
        d.addCallback(serve)
        return d


def docker_plugin_main():
    """
    Script entry point that runs the Docker plugin.
    """
    return ScriptRunner(script=DockerPluginScript(),
                        options=PluginOptions()).main()
