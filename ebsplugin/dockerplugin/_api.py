# -*- test-case-name: ebsplugin.dockerplugin.test.test_api -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
An HTTP API implementing the Docker Volumes Plugin API.

See https://docs.docker.com/engine/extend/plugins_volume/ for details.
"""

from datetime import datetime
from functools import wraps

import yaml

from pytz import UTC

from eliot import log_message, write_failure
from eliot.twisted import DeferredContext

from twisted.python.filepath import FilePath, InsecurePath
from twisted.internet.defer import maybeDeferred
from twisted.web.http import OK

from klein import Klein

from ..restapi import (
    structured, EndpointResponse, BadRequest, make_bad_request,
)
from ..aws import ControlPlaneError
from ..common import timeout
from ..node.filesystem import is_mounted
from ._orchestrator import MountCancelled, MountPhaseError


SCHEMA_BASE = FilePath(__file__).sibling('schema')
SCHEMAS = {
    '/types.json': yaml.safe_load(
        SCHEMA_BASE.child('types.yml').getContent()),
    '/endpoints.json': yaml.safe_load(
        SCHEMA_BASE.child('endpoints.yml').getContent()),
    }

# Give up on mounting a volume after this many seconds.
DEFAULT_MOUNT_TIMEOUT = 300.0

EMPTY_NAME = "Name cannot be empty or null"


class InputInvalid(BadRequest):
    """
    The request doesn't identify a volume properly.

    Docker only shows ``Err`` to the user for successful responses, so this
    is one.
    """
    def __init__(self, message, **fields):
        result = {"Err": message}
        result.update(fields)
        BadRequest.__init__(self, OK, result)


def _docker_error(message, **fields):
    """
    :return: A ``BadRequest`` whose message Docker will show to the user.
    """
    return make_bad_request(code=OK, Err=message, **fields)


def _as_docker_response(failure):
    """
    Turn the failure of an endpoint into a response Docker shows the user.

    Docker ignores the body of anything but a 200 response, so unexpected
    errors are logged and reported with that code too.

    :return: An ``EndpointResponse``.
    """
    if failure.check(BadRequest):
        return EndpointResponse(failure.value.code, failure.value.result)
    write_failure(failure)
    return EndpointResponse(OK, {
        "Err": "{}: {}".format(failure.type.__name__, failure.value)})


def _endpoint(name, ignore_body=False):
    """
    Make a method a Docker plugin endpoint whose result must match the
    ``name`` definition of ``endpoints.yml``.

    :param bool ignore_body: Don't read the request body, for endpoints
        taking no arguments.
    """
    def decorator(f):
        @wraps(f)
        @structured(
            inputSchema={},
            outputSchema={"$ref": "/endpoints.json#/definitions/" + name},
            schema_store=SCHEMAS,
            ignore_body=ignore_body)
        def wrapped(*args, **kwargs):
            return maybeDeferred(f, *args, **kwargs).addErrback(
                _as_docker_response)
        return wrapped
    return decorator


class VolumePlugin(object):
    """
    An implementation of the Docker Volumes Plugin API for EBS volumes.

    A volume's name is its EBS volume identifier and it is mounted at
    ``<mount_root>/<name>``.  We don't validate inputs with a schema since
    Docker doesn't publish one and adds fields over time.  We do validate
    outputs to ensure we output the documented requirements.
    """
    app = Klein()

    def __init__(self, reactor, orchestrator, ec2, node, block_device_manager,
                 run_blocking, mount_root,
                 mount_timeout=DEFAULT_MOUNT_TIMEOUT):
        """
        :param IReactorTime reactor: Reactor time interface implementation.
        :param MountOrchestrator orchestrator: Used to mount volumes.
        :param ec2: An asynchronous ``IEC2VolumeAPI`` provider, used to check
            volumes when they're created.
        :param NodeIdentity node: The local instance.
        :param IBlockDeviceManager block_device_manager: Used to read the
            mount table and to unmount volumes.
        :param run_blocking: Callable running a blocking function in a
            thread and returning a ``Deferred`` of its result.
        :param FilePath mount_root: The directory volumes are mounted beneath.
        :param float mount_timeout: Seconds to wait for a volume to mount.
        """
        self._reactor = reactor
        self._orchestrator = orchestrator
        self._ec2 = ec2
        self._node = node
        self._block_device_manager = block_device_manager
        self._run_blocking = run_blocking
        self._mount_root = mount_root
        self._mount_timeout = mount_timeout

    def _mountpoint(self, name, **fields):
        """
        :param name: The volume name from a request.
        :param fields: Extra fields of the error response.

        :raise InputInvalid: If ``name`` can't name a volume.
        :return: The ``FilePath`` the volume is mounted at.
        """
        if not name:
            raise InputInvalid(EMPTY_NAME, **fields)
        invalid = InputInvalid(
            "Invalid volume name: {}".format(name), **fields)
        if name in (".", ".."):
            raise invalid
        try:
            return self._mount_root.child(name)
        except InsecurePath:
            raise invalid

    def _is_mounted(self, mountpoint):
        """
        :return: ``Deferred`` firing with whether something is mounted at
            ``mountpoint``, read from the mount table in a thread.
        """
        return self._run_blocking(
            is_mounted, self._block_device_manager, mountpoint)

    @app.route("/Plugin.Activate", methods=["POST"])
    @_endpoint("PluginActivate", ignore_body=True)
    def plugin_activate(self):
        """
        Return which Docker plugin APIs this object supports.
        """
        return {"Implements": ["VolumeDriver"]}

    @app.route("/VolumeDriver.Capabilities", methods=["POST"])
    @_endpoint("Capabilities", ignore_body=True)
    def volumedriver_capabilities(self):
        """
        Volumes are only visible on the instance they're attached to.
        """
        return {"Capabilities": {"Scope": "local"}}

    @app.route("/VolumeDriver.Create", methods=["POST"])
    @_endpoint("Create")
    def volumedriver_create(self, Name=None, Opts=None):
        """
        Prepare an existing EBS volume for use.

        The volume must be in this instance's availability zone.  Its
        mountpoint directory is created unless it already exists; Docker
        sends duplicate creates, so an existing directory isn't an error.

        :param unicode Name: The name of the volume.
        :param dict Opts: Options passed from Docker for the volume at
            creation.  Ignored.

        :return: Result indicating success.
        """
        mountpoint = self._mountpoint(Name)
        d = DeferredContext(self._ec2.describe_volume(Name))

        def describe_failed(reason):
            reason.trap(ControlPlaneError)
            raise _docker_error(
                "Failed to describe volume: {}".format(reason.value))
        d.addErrback(describe_failed)

        def got_volume(description):
            if description.zone != self._node.zone:
                raise _docker_error(
                    "Volume {} is not in the same availability zone as the "
                    "instance ({})".format(Name, self._node.zone))
            if not mountpoint.exists():
                mountpoint.makedirs()
            return {"Err": ""}
        d.addCallback(got_volume)
        return d.result

    @app.route("/VolumeDriver.Mount", methods=["POST"])
    @_endpoint("Mount")
    def volumedriver_mount(self, Name=None, ID=None):
        """
        Move a volume with the given name to the current instance and mount
        it.

        :param unicode Name: The name of the volume.
        :param unicode ID: The identifier Docker uses for this mount request.

        :return: Result that includes the mountpoint.
        """
        self._mountpoint(Name, Mountpoint="")
        d = DeferredContext(self._orchestrator.mount(Name))
        d.addCallback(lambda path: {"Err": "", "Mountpoint": path.path})

        timeout(self._reactor, d.result, self._mount_timeout)

        def mount_failed(reason):
            reason.trap(MountPhaseError, MountCancelled)
            log_message(
                message_type="ebsplugin:dockerplugin:mount_failed",
                volume_id=Name, reason=str(reason.value),
            )
            return {"Err": str(reason.value), "Mountpoint": ""}
        d.addErrback(mount_failed)
        return d.result

    @app.route("/VolumeDriver.Unmount", methods=["POST"])
    @_endpoint("Unmount")
    def volumedriver_unmount(self, Name=None, ID=None):
        """
        The Docker container is no longer using the given volume.

        The volume stays attached to this instance; only its mountpoint is
        unmounted, and only if the mount table says it is mounted.

        :param unicode Name: The name of the volume.
        :param unicode ID: The identifier Docker uses for the mount request.

        :return: Result indicating success.
        """
        mountpoint = self._mountpoint(Name)
        d = self._is_mounted(mountpoint)

        def unmount(mounted):
            if mounted:
                return self._run_blocking(
                    self._block_device_manager.unmount, mountpoint)
        d.addCallback(unmount)
        d.addCallback(lambda _: {"Err": ""})
        return d

    @app.route("/VolumeDriver.Remove", methods=["POST"])
    @_endpoint("Remove")
    def volumedriver_remove(self, Name=None):
        """
        Remove a Docker volume's mountpoint directory.

        The EBS volume itself is left alone.  A mounted volume isn't
        removed.

        :param unicode Name: The name of the volume.

        :return: Result indicating success.
        """
        mountpoint = self._mountpoint(Name)
        d = self._is_mounted(mountpoint)

        def remove(mounted):
            if mounted:
                raise _docker_error("Volume {} is still mounted".format(Name))
            if mountpoint.exists():
                mountpoint.remove()
            return {"Err": ""}
        d.addCallback(remove)
        return d

    @app.route("/VolumeDriver.Path", methods=["POST"])
    @_endpoint("Path")
    def volumedriver_path(self, Name=None):
        """
        Return the path of a volume.

        :param unicode Name: The name of the volume.

        :return: Result including the mountpoint.
        """
        mountpoint = self._mountpoint(Name, Mountpoint="")
        if not mountpoint.isdir():
            return {"Err": "Volume not found", "Mountpoint": ""}
        return {"Err": "", "Mountpoint": mountpoint.path}

    @app.route("/VolumeDriver.Get", methods=["POST"])
    @_endpoint("Get")
    def volumedriver_get(self, Name=None):
        """
        Return information about the current state of a particular volume.

        :param unicode Name: The name of the volume.

        :return: Result including the volume and whether it is mounted.
        """
        mountpoint = self._mountpoint(Name)
        if not mountpoint.isdir():
            return {"Err": "Volume not found"}
        d = self._is_mounted(mountpoint)
        d.addCallback(lambda mounted: {
            "Err": "",
            "Volume": {
                "Name": Name,
                "Mountpoint": mountpoint.path,
                "Status": {"Mounted": mounted}}})
        return d

    @app.route("/VolumeDriver.List", methods=["POST"])
    @_endpoint("List", ignore_body=True)
    def volumedriver_list(self):
        """
        Return every volume which has a mountpoint directory.

        :return: Result listing the volumes, sorted by name.
        """
        volumes = []
        if self._mount_root.isdir():
            for child in self._mount_root.children():
                if child.isdir():
                    volumes.append({"Name": child.basename(),
                                    "Mountpoint": child.path})
        return {"Err": "",
                "Volumes": sorted(volumes, key=lambda v: v["Name"])}

    @app.route("/health", methods=["GET"])
    @_endpoint("Health")
    def health(self):
        """
        Report that the plugin is running.
        """
        now = datetime.fromtimestamp(self._reactor.seconds(), tz=UTC)
        return {"status": "ok", "timestamp": now.isoformat()}
