# -*- test-case-name: ebsplugin.node.test.test_device -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Find the local block device of an attached EBS volume.

On Nitro instances EBS volumes show up as NVMe devices whose serial number
is the volume identifier without its dash, e.g. ``vol0123abcd``.  The device
can appear some time after EC2 reports the attachment complete.
"""

from eliot.twisted import DeferredContext

from twisted.python.filepath import FilePath

from ..common import loop_until, LoopExceeded
from ._logging import FIND_DEVICE, DEVICE_NOT_YET_VISIBLE

# Delays between successive looks for the device: five attempts in all.
DEFAULT_STEPS = (1.0, 2.0, 3.0, 4.0)


class DeviceNotFound(Exception):
    """
    No block device with the volume's serial number appeared.

    :ivar str volume_id: The volume looked for.
    :ivar int attempts: How many times the block devices were examined.
    """
    def __init__(self, volume_id, attempts):
        Exception.__init__(self, volume_id, attempts)
        self.volume_id = volume_id
        self.attempts = attempts

    def __str__(self):
        return "No block device found for volume {} after {} attempts".format(
            self.volume_id, self.attempts)


def serial_fragment(volume_id):
    """
    :param str volume_id: An EBS volume identifier, e.g. ``vol-0123``.

    :return: The part of the identifier found in the device serial number.
    """
    if volume_id.startswith("vol-"):
        return volume_id[len("vol-"):]
    return volume_id


class DeviceLocator(object):
    """
    Look through the block devices the kernel knows about for the one backed
    by a volume.

    :ivar reactor: ``IReactorTime`` used to wait between attempts.
    :ivar FilePath sys_block: The sysfs directory listing block devices.
    :ivar FilePath dev: The directory of device nodes.
    :ivar steps: The delays between attempts.
    """
    def __init__(self, reactor, sys_block=FilePath("/sys/block"),
                 dev=FilePath("/dev"), steps=DEFAULT_STEPS):
        self.reactor = reactor
        self.sys_block = sys_block
        self.dev = dev
        self.steps = tuple(steps)

    def _serials(self):
        """
        :return: A ``list`` of ``(name, serial)`` for every block device
            which has a serial number.
        """
        serials = []
        if not self.sys_block.isdir():
            return serials
        children = sorted(
            self.sys_block.children(), key=lambda child: child.basename())
        for child in children:
            serial = child.descendant(["device", "serial"])
            if serial.isfile():
                serials.append((
                    child.basename(),
                    serial.getContent().decode("ascii", "replace").strip(),
                ))
        return serials

    def find_device(self, volume_id):
        """
        Find the block device of ``volume_id``, waiting for it to appear.

        :param str volume_id: A volume attached to the local instance.

        :raise DeviceNotFound: If no device appears in time.
        :return: ``Deferred`` firing with the ``FilePath`` of the device.
        """
        fragment = serial_fragment(volume_id)

        def look():
            serials = self._serials()
            for name, serial in serials:
                if fragment in serial:
                    return self.dev.child(name)
            DEVICE_NOT_YET_VISIBLE.log(
                serial=fragment, devices=[name for (name, _) in serials],
            )
            return None

        action = FIND_DEVICE(volume_id=volume_id, serial=fragment)
        with action.context():
            d = DeferredContext(loop_until(self.reactor, look, self.steps))

            def not_found(reason):
                reason.trap(LoopExceeded)
                raise DeviceNotFound(volume_id, reason.value.attempts)
            d.addErrback(not_found)

            def found(device):
                action.add_success_fields(device=device)
                return device
            d.addCallback(found)
            return d.addActionFinish()
