# -*- test-case-name: ebsplugin.aws.test.test_attachment -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Make sure an EBS volume is attached to the local instance, taking it away
from another instance when nothing there is still using it.
"""

from itertools import repeat

from constantly import NamedConstant, Names
from pyrsistent import PClass, field

from eliot.twisted import DeferredContext

from ._boto import ControlPlaneError
from ._logging import (
    ENSURE_ATTACHED, VOLUME_STATE, WAITING_FOR_VOLUME_STATE,
    DETACHING_FROM_OTHER, NO_AVAILABLE_DEVICE, IN_USE_DEVICES, ATTACHING,
)
from ..common import loop_until

# The device names this plugin attaches volumes as, in order of preference.
DEVICE_SLOTS = tuple("/dev/sd" + letter for letter in "bcdefghij")

# EC2 volume states which can never become attached.
_UNUSABLE_STATES = frozenset({"deleting", "deleted", "error"})

# EC2 attachment states in the middle of a change.
_MOVING_ATTACHMENT_STATES = frozenset({"attaching", "detaching", "busy"})


class AttachmentKinds(Names):
    """
    Where a volume is attached, from the point of view of one instance.

    :ivar AVAILABLE: The volume is attached nowhere.
    :ivar ATTACHED_TO_SELF: The volume is attached to the local instance.
    :ivar ATTACHED_TO_OTHER: The volume is attached to another instance.
    :ivar TRANSITIONING: EC2 is in the middle of changing the attachment.
    """
    AVAILABLE = NamedConstant()
    ATTACHED_TO_SELF = NamedConstant()
    ATTACHED_TO_OTHER = NamedConstant()
    TRANSITIONING = NamedConstant()


class AttachmentState(PClass):
    """
    :ivar kind: One of ``AttachmentKinds``.
    :ivar instance_id: The instance the volume is attached to, for
        ``ATTACHED_TO_SELF`` and ``ATTACHED_TO_OTHER``.
    """
    kind = field(mandatory=True)
    instance_id = field(type=(str, type(None)), initial=None)


class UnusableVolume(ControlPlaneError):
    """
    The volume is being deleted, has been deleted or is in an error state.
    """
    def __init__(self, volume_id, state):
        ControlPlaneError.__init__(
            self, "describe_volumes",
            "Volume {} is in state {}".format(volume_id, state))
        self.volume_id = volume_id
        self.state = state


class NoAvailableDevice(ControlPlaneError):
    """
    Every device name this plugin attaches volumes as is already in use on
    the instance.
    """
    def __init__(self, instance_id):
        ControlPlaneError.__init__(
            self, "attach_volume",
            "No free device name on instance {}".format(instance_id))
        self.instance_id = instance_id


class VolumeBusy(Exception):
    """
    The volume is attached to another instance and tasks there still use it.
    """
    def __init__(self, volume_id, instance_id):
        Exception.__init__(self, volume_id, instance_id)
        self.volume_id = volume_id
        self.instance_id = instance_id

    def __str__(self):
        return "Volume {} is in use on instance {}".format(
            self.volume_id, self.instance_id)


def attachment_state(description, instance_id):
    """
    Work out where a volume is attached.

    :param VolumeDescription description: A fresh description of the volume.
    :param str instance_id: The local instance.

    :raise UnusableVolume: If the volume can never be attached.
    :return: An ``AttachmentState``.
    """
    if description.state in _UNUSABLE_STATES:
        raise UnusableVolume(description.volume_id, description.state)
    if description.state == "creating":
        return AttachmentState(kind=AttachmentKinds.TRANSITIONING)
    for attachment in description.attachments:
        if attachment.state in _MOVING_ATTACHMENT_STATES:
            return AttachmentState(kind=AttachmentKinds.TRANSITIONING)
    attached = [
        attachment for attachment in description.attachments
        if attachment.state == "attached"
    ]
    if attached:
        owner = attached[0].instance_id
        if owner == instance_id:
            kind = AttachmentKinds.ATTACHED_TO_SELF
        else:
            kind = AttachmentKinds.ATTACHED_TO_OTHER
        return AttachmentState(kind=kind, instance_id=owner)
    if description.state == "in-use":
        # EC2 says attached but hasn't reported to where yet.
        return AttachmentState(kind=AttachmentKinds.TRANSITIONING)
    return AttachmentState(kind=AttachmentKinds.AVAILABLE)


def next_device(devices_in_use):
    """
    :param devices_in_use: The device names already used by an instance.

    :return: The first of ``DEVICE_SLOTS`` not in ``devices_in_use``, or
        ``None`` if they are all taken.
    """
    for device in DEVICE_SLOTS:
        if device not in devices_in_use:
            return device
    return None


class AttachmentController(object):
    """
    Move a volume to the local instance.

    :ivar reactor: ``IReactorTime`` used for polling.
    :ivar ec2: An ``IEC2VolumeAPI`` whose methods return ``Deferred``.
    :ivar scanner: An ``InUseScanner`` consulted before taking a volume
        from another instance.
    :ivar node: The local ``NodeIdentity``.
    """
    _POLL_INTERVAL = 1.0

    def __init__(self, reactor, ec2, scanner, node):
        self.reactor = reactor
        self.ec2 = ec2
        self.scanner = scanner
        self.node = node

    def ensure_attached(self, volume_id):
        """
        Attach ``volume_id`` to the local instance, unless it already is.

        Waits for EC2 to report the attachment as complete.  Waiting has no
        upper bound; cancel the result to give up.

        :raise VolumeBusy: If the volume is attached elsewhere and still
            in use.
        :raise ControlPlaneError: If any EC2 request fails.
        :return: ``Deferred`` firing with ``None`` once attached.
        """
        action = ENSURE_ATTACHED(
            volume_id=volume_id, instance_id=self.node.instance_id)
        with action.context():
            d = DeferredContext(self._current_state(volume_id))
            d.addCallback(self._dispatch, volume_id)
            return d.addActionFinish()

    def _current_state(self, volume_id):
        """
        :return: ``Deferred`` firing with a tuple of the
            ``VolumeDescription`` and ``AttachmentState`` of the volume.
        """
        d = self.ec2.describe_volume(volume_id)

        def got_description(description):
            state = attachment_state(description, self.node.instance_id)
            VOLUME_STATE.log(
                volume_id=volume_id, state=state.kind.name,
                instance_id=state.instance_id,
            )
            return description, state
        d.addCallback(got_description)
        return d

    def _wait_for(self, volume_id, kinds):
        """
        Poll the volume until its attachment is one of ``kinds``.

        :return: ``Deferred`` firing with the description and state tuple
            which matched.
        """
        def check():
            d = self._current_state(volume_id)

            def matches(result):
                description, state = result
                if state.kind in kinds:
                    return result
                WAITING_FOR_VOLUME_STATE.log(
                    volume_id=volume_id, state=state.kind.name,
                    target_states=sorted(kind.name for kind in kinds),
                )
                return False
            d.addCallback(matches)
            return d
        return loop_until(
            self.reactor, check, repeat(self._POLL_INTERVAL))

    def _dispatch(self, result, volume_id):
        description, state = result
        if state.kind is AttachmentKinds.ATTACHED_TO_SELF:
            return None
        elif state.kind is AttachmentKinds.TRANSITIONING:
            settled = set(AttachmentKinds.iterconstants()) - {
                AttachmentKinds.TRANSITIONING}
            d = self._wait_for(volume_id, settled)
            d.addCallback(self._dispatch, volume_id)
            return d
        elif state.kind is AttachmentKinds.ATTACHED_TO_OTHER:
            return self._take_over(description, state)
        else:
            return self._attach(volume_id)

    def _take_over(self, description, state):
        """
        Detach the volume from the other instance if nothing there uses it,
        then attach it here.
        """
        volume_id = description.volume_id
        d = self.scanner.volume_in_use(volume_id, self.node.zone)

        def detach(in_use):
            if in_use:
                raise VolumeBusy(volume_id, state.instance_id)
            DETACHING_FROM_OTHER.log(
                volume_id=volume_id, instance_id=state.instance_id)
            return self.ec2.detach_volume(volume_id, state.instance_id)
        d.addCallback(detach)
        d.addCallback(
            lambda _: self._wait_for(volume_id, {AttachmentKinds.AVAILABLE}))
        d.addCallback(lambda _: self._attach(volume_id))
        return d

    def _attach(self, volume_id):
        """
        Attach an available volume at the first free device slot.
        """
        instance_id = self.node.instance_id
        d = self.ec2.devices_in_use(instance_id)

        def attach(devices):
            IN_USE_DEVICES.log(devices=sorted(devices))
            device = next_device(devices)
            if device is None:
                NO_AVAILABLE_DEVICE.log(devices=sorted(devices))
                raise NoAvailableDevice(instance_id)
            ATTACHING.log(
                volume_id=volume_id, instance_id=instance_id, device=device,
            )
            return self.ec2.attach_volume(volume_id, instance_id, device)
        d.addCallback(attach)
        d.addCallback(
            lambda _: self._wait_for(
                volume_id, {AttachmentKinds.ATTACHED_TO_SELF}))
        d.addCallback(lambda _: None)
        return d
