# -*- test-case-name: ebsplugin.aws.test.test_ec2 -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The subset of the EC2 API needed to move an EBS volume between instances.
"""

from pyrsistent import PClass, field, pvector_field, pset
from zope.interface import Interface, implementer

from ..common import auto_threaded
from ._boto import ControlPlaneError, call_aws

# http://docs.aws.amazon.com/AWSEC2/latest/APIReference/errors-overview.html
# for error details:
NOT_FOUND = 'InvalidVolume.NotFound'


class UnknownVolume(ControlPlaneError):
    """
    EC2 has no volume with the given identifier.
    """
    def __init__(self, volume_id):
        ControlPlaneError.__init__(
            self, "describe_volumes",
            "Volume {} does not exist".format(volume_id), code=NOT_FOUND)
        self.volume_id = volume_id


class VolumeAttachment(PClass):
    """
    One attachment of an EBS volume, as reported by ``DescribeVolumes``.

    :ivar str instance_id: The instance the volume is attached to.
    :ivar str state: ``attaching``, ``attached``, ``detaching``, ``detached``
        or ``busy``.
    :ivar str device: The device name the attachment was requested with.
    """
    instance_id = field(type=str, mandatory=True)
    state = field(type=str, mandatory=True)
    device = field(type=(str, type(None)), initial=None)


class VolumeDescription(PClass):
    """
    The parts of an EBS volume's description this plugin cares about.

    :ivar str volume_id: The volume identifier.
    :ivar str state: The EC2 volume state, e.g. ``available`` or ``in-use``.
    :ivar str zone: The availability zone the volume lives in.
    :ivar attachments: The ``VolumeAttachment``s of the volume.
    """
    volume_id = field(type=str, mandatory=True)
    state = field(type=str, mandatory=True)
    zone = field(type=str, mandatory=True)
    attachments = pvector_field(VolumeAttachment)


def _description_from_ebs_volume(ebs_volume):
    """
    Convert one element of a ``DescribeVolumes`` response.
    """
    return VolumeDescription(
        volume_id=ebs_volume['VolumeId'],
        state=ebs_volume['State'],
        zone=ebs_volume['AvailabilityZone'],
        attachments=[
            VolumeAttachment(
                instance_id=attachment['InstanceId'],
                state=attachment['State'],
                device=attachment.get('Device'),
            )
            for attachment in ebs_volume.get('Attachments', [])
        ],
    )


class IEC2VolumeAPI(Interface):
    """
    Blocking access to the EC2 operations for attaching volumes.

    Every method raises ``ControlPlaneError`` if EC2 reports a failure.
    """
    def describe_volume(volume_id):
        """
        :param str volume_id: The volume to describe.

        :raise UnknownVolume: If there is no such volume.
        :return: A ``VolumeDescription``.
        """

    def attach_volume(volume_id, instance_id, device):
        """
        Request the attachment of a volume.  This returns before the
        attachment completes.

        :param str volume_id: The volume to attach.
        :param str instance_id: The instance to attach it to.
        :param str device: The device name to attach it as, e.g.
            ``/dev/sdf``.
        """

    def detach_volume(volume_id, instance_id):
        """
        Request the detachment of a volume.  This returns before the
        detachment completes.

        :param str volume_id: The volume to detach.
        :param str instance_id: The instance to detach it from.
        """

    def devices_in_use(instance_id):
        """
        :param str instance_id: An EC2 instance.

        :return: A ``pset`` of the device names in the block device mappings
            of the instance.
        """


@implementer(IEC2VolumeAPI)
class EC2VolumeAPI(PClass):
    """
    ``IEC2VolumeAPI`` on top of a boto3 EC2 client.
    """
    client = field(mandatory=True)

    def describe_volume(self, volume_id):
        try:
            response = call_aws(
                self.client, "describe_volumes", VolumeIds=[volume_id])
        except ControlPlaneError as e:
            if e.code == NOT_FOUND:
                raise UnknownVolume(volume_id)
            raise
        volumes = response['Volumes']
        if not volumes:
            raise UnknownVolume(volume_id)
        return _description_from_ebs_volume(volumes[0])

    def attach_volume(self, volume_id, instance_id, device):
        call_aws(
            self.client, "attach_volume",
            VolumeId=volume_id, InstanceId=instance_id, Device=device,
        )

    def detach_volume(self, volume_id, instance_id):
        call_aws(
            self.client, "detach_volume",
            VolumeId=volume_id, InstanceId=instance_id,
        )

    def devices_in_use(self, instance_id):
        response = call_aws(
            self.client, "describe_instances", InstanceIds=[instance_id])
        return pset(
            mapping['DeviceName']
            for reservation in response['Reservations']
            for instance in reservation['Instances']
            for mapping in instance.get('BlockDeviceMappings', [])
        )


@auto_threaded(IEC2VolumeAPI, "_reactor", "_sync", "_threadpool")
class ThreadedEC2VolumeAPI(PClass):
    """
    An asynchronous version of an ``IEC2VolumeAPI`` provider; every method
    returns a ``Deferred`` and runs in a thread pool.
    """
    _reactor = field()
    _sync = field()
    _threadpool = field()
