# -*- test-case-name: ebsplugin.dockerplugin.test.test_orchestrator -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Everything that has to happen before a volume can be used by a container.
"""

from constantly import ValueConstant, Values

from eliot import start_action
from eliot.twisted import DeferredContext

from twisted.internet.defer import CancelledError, maybeDeferred


class Phases(Values):
    """
    The steps of mounting a volume, in order.
    """
    ATTACH = ValueConstant("attach")
    DEVICE = ValueConstant("device")
    MOUNT = ValueConstant("mount")


class MountPhaseError(Exception):
    """
    A step of mounting a volume failed.

    :ivar phase: The ``Phases`` constant of the step which failed.
    :ivar error: The exception it failed with.
    """
    def __init__(self, phase, error):
        Exception.__init__(self, phase, error)
        self.phase = phase
        self.error = error

    def __str__(self):
        return "{}: {}: {}".format(
            self.phase.value, type(self.error).__name__, self.error)


class MountCancelled(Exception):
    """
    Mounting a volume was given up on.

    :ivar phase: The ``Phases`` constant of the step which was interrupted.
    """
    def __init__(self, phase):
        Exception.__init__(self, phase)
        self.phase = phase

    def __str__(self):
        return "Timed out waiting for volume to mount ({}).".format(
            self.phase.value)


def _in_phase(phase, function, *args):
    """
    Call ``function``, tagging any failure with ``phase``.
    """
    d = maybeDeferred(function, *args)

    def tag(reason):
        if reason.check(CancelledError):
            raise MountCancelled(phase)
        raise MountPhaseError(phase, reason.value)
    d.addErrback(tag)
    return d


class MountOrchestrator(object):
    """
    Attach a volume, find its block device and mount it.

    :ivar attachments: An ``AttachmentController``.
    :ivar locator: A ``DeviceLocator``.
    :ivar provisioner: A ``FilesystemProvisioner``; its blocking methods are
        run with ``run_blocking``.
    :ivar run_blocking: Callable running a blocking function in a thread and
        returning a ``Deferred`` of its result.
    :ivar FilePath mount_root: The directory volumes are mounted beneath.
    """
    def __init__(self, attachments, locator, provisioner, run_blocking,
                 mount_root):
        self.attachments = attachments
        self.locator = locator
        self.provisioner = provisioner
        self.run_blocking = run_blocking
        self.mount_root = mount_root

    def mount(self, volume_id):
        """
        Make ``volume_id`` available at ``<mount_root>/<volume_id>``.

        No step starts before the previous one has finished.  Cancelling the
        result interrupts the current step.

        :raise MountPhaseError: If a step fails.
        :raise MountCancelled: If the result is cancelled.
        :return: ``Deferred`` firing with the mountpoint ``FilePath``.
        """
        mountpoint = self.mount_root.child(volume_id)
        action = start_action(
            action_type="ebsplugin:dockerplugin:mount", volume_id=volume_id,
            mountpoint=mountpoint.path,
        )
        with action.context():
            d = DeferredContext(_in_phase(
                Phases.ATTACH, self.attachments.ensure_attached, volume_id))
            d.addCallback(lambda _: _in_phase(
                Phases.DEVICE, self.locator.find_device, volume_id))
            d.addCallback(lambda device: _in_phase(
                Phases.MOUNT, self.run_blocking,
                self.provisioner.provision, device, mountpoint))
            return d.addActionFinish()
