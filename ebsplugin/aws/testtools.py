# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
In-memory stand-ins for EC2 and ECS, for use in tests.
"""

from botocore.exceptions import ClientError
from pyrsistent import pset
from zope.interface import implementer

from twisted.internet.defer import fail, succeed

from .ec2 import IEC2VolumeAPI, UnknownVolume, VolumeDescription


def client_error(operation, code="AccessDeniedException",
                 message="Not authorized"):
    """
    :return: A botocore ``ClientError`` like the ones AWS failures produce.
    """
    return ClientError(
        {"Error": {"Code": code, "Message": message},
         "ResponseMetadata": {"RequestId": "fake-request"}},
        operation,
    )


def volume(volume_id, state="available", zone="us-east-1a",
           attached_to=None, attachment_state="attached"):
    """
    Make a ``VolumeDescription`` with at most one attachment.
    """
    attachments = []
    if attached_to is not None:
        attachments.append(
            {"instance_id": attached_to, "state": attachment_state,
             "device": "/dev/sdf"})
    return VolumeDescription.create({
        "volume_id": volume_id, "state": state, "zone": zone,
        "attachments": attachments,
    })


@implementer(IEC2VolumeAPI)
class FakeEC2VolumeAPI(object):
    """
    An asynchronous ``IEC2VolumeAPI`` keeping volumes in memory.

    Attaching and detaching don't complete immediately: the volume is
    described as moving for ``settle_after`` further descriptions.

    :ivar calls: Every call made, as tuples of method name and arguments.
    :ivar failures: Maps method names to exceptions those methods fail with.
    """
    def __init__(self, volumes=(), devices=(), settle_after=1):
        self.volumes = {v.volume_id: v for v in volumes}
        self.devices = pset(devices)
        self.settle_after = settle_after
        self.calls = []
        self.failures = {}
        self._pending = {}

    def _record(self, *call):
        self.calls.append(call)
        return self.failures.get(call[0])

    def describe_volume(self, volume_id):
        error = self._record("describe_volume", volume_id)
        if error is not None:
            return fail(error)
        if volume_id in self._pending:
            remaining, final = self._pending[volume_id]
            if remaining > 0:
                self._pending[volume_id] = (remaining - 1, final)
            else:
                del self._pending[volume_id]
                self.volumes[volume_id] = final
        if volume_id not in self.volumes:
            return fail(UnknownVolume(volume_id))
        return succeed(self.volumes[volume_id])

    def move(self, volume_id, moving, final):
        """
        Describe ``volume_id`` as ``moving`` for the next ``settle_after``
        descriptions and as ``final`` after that.
        """
        self.volumes[volume_id] = moving
        self._pending[volume_id] = (self.settle_after, final)

    def attach_volume(self, volume_id, instance_id, device):
        error = self._record("attach_volume", volume_id, instance_id, device)
        if error is not None:
            return fail(error)
        current = self.volumes[volume_id]
        self.move(
            volume_id,
            volume(volume_id, state="in-use", zone=current.zone,
                   attached_to=instance_id, attachment_state="attaching"),
            volume(volume_id, state="in-use", zone=current.zone,
                   attached_to=instance_id),
        )
        return succeed(None)

    def detach_volume(self, volume_id, instance_id):
        error = self._record("detach_volume", volume_id, instance_id)
        if error is not None:
            return fail(error)
        current = self.volumes[volume_id]
        self.move(
            volume_id,
            volume(volume_id, state="in-use", zone=current.zone,
                   attached_to=instance_id, attachment_state="detaching"),
            volume(volume_id, zone=current.zone),
        )
        return succeed(None)

    def devices_in_use(self, instance_id):
        error = self._record("devices_in_use", instance_id)
        if error is not None:
            return fail(error)
        return succeed(self.devices)

    def call_names(self):
        """
        :return: The method names of ``calls`` in order.
        """
        return [call[0] for call in self.calls]


class FakeScanner(object):
    """
    An ``InUseScanner`` with a fixed answer.

    :ivar calls: The ``(volume_name, zone)`` pairs asked about.
    """
    def __init__(self, in_use=False):
        self.in_use = in_use
        self.calls = []

    def volume_in_use(self, volume_name, zone):
        self.calls.append((volume_name, zone))
        return succeed(self.in_use)


class _FakePaginator(object):
    def __init__(self, client, operation):
        self._client = client
        self._operation = operation

    def paginate(self, **kwargs):
        return self._client._pages(self._operation, **kwargs)


class FakeECSClient(object):
    """
    A boto3 ECS client with a few clusters in memory.

    Each cluster is a ``dict`` with ``container_instances`` mapping container
    instance ARNs to EC2 instance ids and ``tasks``, a list of task ``dict``s
    as ``DescribeTasks`` returns them.

    :ivar clusters: Maps cluster ARNs to cluster ``dict``s.
    :ivar task_definitions: Maps task definition ARNs to lists of volume
        names.
    :ivar failing: ARNs of clusters whose scan fails.
    :ivar failing_definitions: ARNs of task definitions which can't be
        described.
    :ivar calls: Every operation performed, as tuples of the operation name
        and the cluster (or ``None``).
    :ivar page_size: How many items list operations put in each page.
    """
    def __init__(self, clusters=None, task_definitions=None, failing=(),
                 failing_definitions=(), page_size=2):
        self.clusters = clusters or {}
        self.task_definitions = task_definitions or {}
        self.failing = set(failing)
        self.failing_definitions = set(failing_definitions)
        self.calls = []
        self.page_size = page_size
        self.fail_listing_clusters = False

    def get_paginator(self, operation):
        return _FakePaginator(self, operation)

    def _check(self, operation, cluster):
        self.calls.append((operation, cluster))
        if cluster in self.failing:
            raise client_error(operation)

    def _pages(self, operation, cluster=None):
        if operation == "list_clusters":
            self.calls.append((operation, None))
            if self.fail_listing_clusters:
                raise client_error(operation)
            key, items = "clusterArns", sorted(self.clusters)
        elif operation == "list_container_instances":
            self._check(operation, cluster)
            key = "containerInstanceArns"
            items = sorted(self.clusters[cluster]["container_instances"])
        elif operation == "list_tasks":
            self._check(operation, cluster)
            key = "taskArns"
            items = [
                task["taskArn"] for task in self.clusters[cluster]["tasks"]]
        else:
            raise KeyError(operation)
        for start in range(0, max(len(items), 1), self.page_size):
            yield {key: items[start:start + self.page_size]}

    def describe_container_instances(self, cluster, containerInstances):
        self._check("describe_container_instances", cluster)
        known = self.clusters[cluster]["container_instances"]
        return {"containerInstances": [
            {"containerInstanceArn": arn, "ec2InstanceId": known[arn]}
            for arn in containerInstances
        ]}

    def describe_tasks(self, cluster, tasks):
        self._check("describe_tasks", cluster)
        return {"tasks": [
            task for task in self.clusters[cluster]["tasks"]
            if task["taskArn"] in tasks
        ]}

    def describe_task_definition(self, taskDefinition):
        self.calls.append(("describe_task_definition", taskDefinition))
        if taskDefinition in self.failing_definitions:
            raise client_error("describe_task_definition")
        return {"taskDefinition": {
            "taskDefinitionArn": taskDefinition,
            "volumes": [
                {"name": name}
                for name in self.task_definitions.get(taskDefinition, [])
            ],
        }}


class FakeEC2Client(object):
    """
    A boto3 EC2 client which only knows which zone instances are in.

    :ivar zones: Maps EC2 instance ids to availability zones.
    """
    def __init__(self, zones=None):
        self.zones = zones or {}
        self.calls = []

    def describe_instances(self, InstanceIds):
        self.calls.append(("describe_instances", tuple(InstanceIds)))
        return {"Reservations": [
            {"Instances": [
                {"InstanceId": instance_id,
                 "Placement": {"AvailabilityZone": self.zones[instance_id]}}
                for instance_id in InstanceIds if instance_id in self.zones
            ]},
        ]}
