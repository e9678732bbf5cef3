# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``ebsplugin.aws.attachment``.
"""

from twisted.internet.defer import CancelledError
from twisted.internet.task import Clock

from .._boto import ControlPlaneError
from ..attachment import (
    AttachmentController, AttachmentKinds, AttachmentState, DEVICE_SLOTS,
    NoAvailableDevice, UnusableVolume, VolumeBusy, attachment_state,
    next_device,
)
from ..metadata import NodeIdentity
from ..testtools import FakeEC2VolumeAPI, FakeScanner, volume
from ...testtools import TestCase

VOLUME = "vol-0abc"
SELF = "i-self"
OTHER = "i-other"
NODE = NodeIdentity(region="us-east-1", zone="us-east-1a", instance_id=SELF)


class AttachmentStateTests(TestCase):
    """
    Tests for ``attachment_state``.
    """
    def assert_state(self, description, kind, instance_id=None):
        self.assertEqual(
            AttachmentState(kind=kind, instance_id=instance_id),
            attachment_state(description, SELF),
        )

    def test_available(self):
        """
        An ``available`` volume without attachments is ``AVAILABLE``.
        """
        self.assert_state(volume(VOLUME), AttachmentKinds.AVAILABLE)

    def test_attached_to_self(self):
        """
        A volume attached to the local instance is ``ATTACHED_TO_SELF``.
        """
        self.assert_state(
            volume(VOLUME, state="in-use", attached_to=SELF),
            AttachmentKinds.ATTACHED_TO_SELF, SELF,
        )

    def test_attached_to_other(self):
        """
        A volume attached to another instance is ``ATTACHED_TO_OTHER`` and
        names that instance.
        """
        self.assert_state(
            volume(VOLUME, state="in-use", attached_to=OTHER),
            AttachmentKinds.ATTACHED_TO_OTHER, OTHER,
        )

    def test_creating(self):
        """
        A volume still being created is ``TRANSITIONING``.
        """
        self.assert_state(
            volume(VOLUME, state="creating"), AttachmentKinds.TRANSITIONING)

    def test_moving_attachment(self):
        """
        A volume whose attachment is attaching, detaching or busy is
        ``TRANSITIONING``.
        """
        for state in ("attaching", "detaching", "busy"):
            self.assert_state(
                volume(VOLUME, state="in-use", attached_to=OTHER,
                       attachment_state=state),
                AttachmentKinds.TRANSITIONING,
            )

    def test_in_use_without_attachment(self):
        """
        An ``in-use`` volume for which EC2 reports no attachment yet is
        ``TRANSITIONING``.
        """
        self.assert_state(
            volume(VOLUME, state="in-use"), AttachmentKinds.TRANSITIONING)

    def test_unusable(self):
        """
        Deleted, deleting and failed volumes raise ``UnusableVolume``.
        """
        for state in ("deleting", "deleted", "error"):
            error = self.assertRaises(
                UnusableVolume,
                attachment_state, volume(VOLUME, state=state), SELF,
            )
            self.assertEqual(state, error.state)


class NextDeviceTests(TestCase):
    """
    Tests for ``next_device``.
    """
    def test_first_free(self):
        """
        The first device slot not already in use is chosen.
        """
        self.assertEqual(
            "/dev/sdd", next_device({"/dev/xvda", "/dev/sdb", "/dev/sdc"}))

    def test_gap(self):
        """
        Slots freed earlier in the order are reused.
        """
        self.assertEqual("/dev/sdb", next_device({"/dev/sdc"}))

    def test_full(self):
        """
        ``None`` is returned when every slot is in use.
        """
        self.assertIs(None, next_device(set(DEVICE_SLOTS)))


class AttachmentControllerTests(TestCase):
    """
    Tests for ``AttachmentController.ensure_attached``.
    """
    def setUp(self):
        super(AttachmentControllerTests, self).setUp()
        self.clock = Clock()
        self.scanner = FakeScanner()

    def controller(self, *volumes, **kwargs):
        self.ec2 = FakeEC2VolumeAPI(volumes, **kwargs)
        return AttachmentController(self.clock, self.ec2, self.scanner, NODE)

    def test_already_attached(self):
        """
        A volume already attached to the local instance needs nothing more
        than one description.
        """
        controller = self.controller(
            volume(VOLUME, state="in-use", attached_to=SELF))
        self.assertIs(
            None, self.successResultOf(controller.ensure_attached(VOLUME)))
        self.assertEqual([("describe_volume", VOLUME)], self.ec2.calls)

    def test_attach_available(self):
        """
        An available volume is attached at the first free device slot and
        the result fires once EC2 reports the attachment complete.
        """
        controller = self.controller(volume(VOLUME), devices={"/dev/sdb"})
        d = controller.ensure_attached(VOLUME)
        self.assertNoResult(d)
        self.clock.advance(1.0)
        self.successResultOf(d)
        self.assertEqual(
            [("describe_volume", VOLUME),
             ("devices_in_use", SELF),
             ("attach_volume", VOLUME, SELF, "/dev/sdc"),
             ("describe_volume", VOLUME),
             ("describe_volume", VOLUME)],
            self.ec2.calls,
        )

    def test_steal_unused(self):
        """
        A volume attached to another instance which the scanner reports
        unused is detached from that instance, waited on until available,
        attached here and waited on until attached, in that order.
        """
        controller = self.controller(
            volume(VOLUME, state="in-use", attached_to=OTHER))
        d = controller.ensure_attached(VOLUME)
        self.clock.advance(1.0)
        self.assertNoResult(d)
        self.clock.advance(1.0)
        self.successResultOf(d)
        self.assertEqual(
            [("describe_volume", VOLUME),
             ("detach_volume", VOLUME, OTHER),
             ("describe_volume", VOLUME),
             ("describe_volume", VOLUME),
             ("devices_in_use", SELF),
             ("attach_volume", VOLUME, SELF, "/dev/sdb"),
             ("describe_volume", VOLUME),
             ("describe_volume", VOLUME)],
            self.ec2.calls,
        )
        self.assertEqual([(VOLUME, "us-east-1a")], self.scanner.calls)

    def test_scans_local_zone(self):
        """
        The scanner is asked about tasks in the local instance's zone, not
        the zone EC2 reports for the volume.
        """
        controller = self.controller(
            volume(VOLUME, state="in-use", attached_to=OTHER,
                   zone="us-east-1b"))
        controller.ensure_attached(VOLUME)
        self.assertEqual([(VOLUME, NODE.zone)], self.scanner.calls)

    def test_busy(self):
        """
        A volume attached to another instance where the scanner reports it
        in use is left alone and ``VolumeBusy`` is raised.
        """
        self.scanner.in_use = True
        controller = self.controller(
            volume(VOLUME, state="in-use", attached_to=OTHER))
        failure = self.failureResultOf(
            controller.ensure_attached(VOLUME), VolumeBusy)
        self.assertEqual(
            "Volume vol-0abc is in use on instance i-other",
            str(failure.value))
        self.assertEqual(["describe_volume"], self.ec2.call_names())

    def test_transitioning(self):
        """
        A volume in the middle of changing is polled until it settles and is
        then handled according to its settled state.
        """
        controller = self.controller(volume(VOLUME), settle_after=2)
        self.ec2.move(
            VOLUME, volume(VOLUME, state="creating"), volume(VOLUME))
        d = controller.ensure_attached(VOLUME)
        self.assertEqual(["describe_volume"] * 2, self.ec2.call_names())
        self.clock.pump([1.0] * 4)
        self.successResultOf(d)
        self.assertEqual(
            ("attach_volume", VOLUME, SELF, "/dev/sdb"), self.ec2.calls[4])

    def test_no_available_device(self):
        """
        If every device slot is used, ``NoAvailableDevice`` is raised and no
        attachment is requested.
        """
        controller = self.controller(volume(VOLUME), devices=DEVICE_SLOTS)
        self.failureResultOf(
            controller.ensure_attached(VOLUME), NoAvailableDevice)
        self.assertNotIn("attach_volume", self.ec2.call_names())

    def test_control_plane_error(self):
        """
        An EC2 failure aborts the attachment immediately.
        """
        controller = self.controller(volume(VOLUME))
        self.ec2.failures["attach_volume"] = ControlPlaneError(
            "attach_volume", "IncorrectState: no", code="IncorrectState")
        self.failureResultOf(
            controller.ensure_attached(VOLUME), ControlPlaneError)
        self.assertEqual(
            ["describe_volume", "devices_in_use", "attach_volume"],
            self.ec2.call_names(),
        )

    def test_unusable(self):
        """
        A deleted volume fails with ``UnusableVolume``.
        """
        controller = self.controller(volume(VOLUME, state="deleted"))
        self.failureResultOf(
            controller.ensure_attached(VOLUME), UnusableVolume)

    def test_cancel_while_waiting(self):
        """
        Cancelling the result while waiting for EC2 stops polling and fails
        with ``CancelledError``.
        """
        controller = self.controller(volume(VOLUME), settle_after=100)
        d = controller.ensure_attached(VOLUME)
        d.cancel()
        self.failureResultOf(d, CancelledError)
        calls = len(self.ec2.calls)
        self.clock.pump([1.0] * 5)
        self.assertEqual(calls, len(self.ec2.calls))
        self.assertEqual([], self.clock.getDelayedCalls())
