# -*- test-case-name: ebsplugin.aws.test.test_inuse -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Find out whether ECS tasks in this availability zone still use a volume.

Every ECS cluster in the region is scanned concurrently, one thread pool job
per cluster.  Each job returns the number of task definitions declaring the
volume which have live tasks in the zone, and the results are summed once
every job has finished.  A shared, lock protected progress counter of the
references found by finished jobs lets the rest stop early once the answer
is certain.
"""

from collections import defaultdict
from threading import Lock

from eliot import write_failure
from eliot.twisted import DeferredContext

from twisted.internet.defer import FirstError, gatherResults

from ._boto import ControlPlaneError, batches, call_aws, paginate_aws
from ._logging import (
    SCAN_FOR_REFERENCES, SCAN_CLUSTER, CLUSTER_SCAN_FAILED,
    SCAN_SHORT_CIRCUITED, VOLUME_REFERENCED, IN_USE_DECISION,
)

# A volume is in use when more than this many references to it are found.
BUSY_THRESHOLD = 1

# ECS task ``lastStatus`` values of tasks which are not yet fully stopped.
LIVE_TASK_STATUSES = frozenset({
    "PROVISIONING", "PENDING", "ACTIVATING", "RUNNING", "DEACTIVATING",
    "STOPPING",
})

# The most items ECS and EC2 describe calls accept at once.
_DESCRIBE_BATCH_SIZE = 100


def is_in_use(count, threshold=BUSY_THRESHOLD):
    """
    :param int count: The number of references to a volume.

    :return: ``True`` if the volume must not be taken away.
    """
    return count > threshold


class _ScanStopped(Exception):
    """
    The scan of a cluster was abandoned because the answer is already known.
    """


class _ScanProgress(object):
    """
    References found so far, shared by every cluster job of one scan.
    """
    def __init__(self, threshold):
        self._lock = Lock()
        self._threshold = threshold
        self._found = 0
        self._stopped = False

    def add(self, count):
        with self._lock:
            self._found += count

    def stop(self):
        with self._lock:
            self._stopped = True

    def check(self):
        """
        :raise _ScanStopped: If jobs should make no further AWS calls.
        """
        with self._lock:
            if self._stopped or self._found > self._threshold:
                raise _ScanStopped()


class InUseScanner(object):
    """
    Count the ECS task definitions declaring a volume which have live
    tasks in one availability zone.

    :ivar ecs: A boto3 ECS client.
    :ivar ec2: A boto3 EC2 client.
    :ivar run_blocking: Callable running a blocking function in a thread and
        returning a ``Deferred`` of its result, e.g. the result of
        ``ebsplugin.common.in_threadpool``.
    :ivar threshold: The number of references tolerated before a volume
        counts as in use.
    """
    def __init__(self, ecs, ec2, run_blocking, threshold=BUSY_THRESHOLD):
        self.ecs = ecs
        self.ec2 = ec2
        self.run_blocking = run_blocking
        self.threshold = threshold

    def volume_in_use(self, volume_name, zone):
        """
        :param str volume_name: The volume name task definitions declare.
        :param str zone: The availability zone of interest.

        :raise ControlPlaneError: If the ECS clusters can't be listed.
        :return: ``Deferred`` firing with ``True`` if the volume is in use.
        """
        d = self.count_references(volume_name, zone)

        def decide(count):
            in_use = is_in_use(count, self.threshold)
            IN_USE_DECISION.log(
                volume_name=volume_name, count=count, in_use=in_use,
            )
            return in_use
        d.addCallback(decide)
        return d

    def count_references(self, volume_name, zone):
        """
        Count the task definitions declaring a volume named ``volume_name``
        which have live tasks in ``zone``, once per cluster they run in.

        Scanning stops early once more than ``threshold`` references have
        been found, so larger counts are lower bounds.  A cluster whose scan
        fails contributes nothing.

        :raise ControlPlaneError: If the ECS clusters can't be listed.
        :return: ``Deferred`` firing with an ``int``.
        """
        progress = _ScanProgress(self.threshold)
        action = SCAN_FOR_REFERENCES(volume_name=volume_name, zone=zone)
        with action.context():
            d = DeferredContext(self.run_blocking(
                paginate_aws, self.ecs, "list_clusters", "clusterArns"))

            def scan_all(clusters):
                jobs = []
                for cluster in clusters:
                    job = self.run_blocking(
                        self._scan_cluster, cluster, volume_name,
                        zone, progress,
                    )
                    job.addErrback(self._cluster_failed, cluster)
                    jobs.append(job)
                joined = gatherResults(jobs, consumeErrors=True)

                def stop_jobs(reason):
                    progress.stop()
                    if reason.check(FirstError):
                        return reason.value.subFailure
                    return reason
                joined.addErrback(stop_jobs)
                return joined
            d.addCallback(scan_all)
            d.addCallback(sum)

            def finished(count):
                action.add_success_fields(count=count)
                return count
            d.addCallback(finished)
            return d.addActionFinish()

    def _cluster_failed(self, reason, cluster):
        reason.trap(ControlPlaneError)
        CLUSTER_SCAN_FAILED.log(cluster=cluster)
        write_failure(reason)
        return 0

    def _scan_cluster(self, cluster, volume_name, zone, progress):
        """
        Count the references in one cluster.  Runs in a thread.
        """
        with SCAN_CLUSTER(cluster=cluster) as action:
            found = []
            try:
                self._count_in_cluster(
                    cluster, volume_name, zone, progress, found)
            except _ScanStopped:
                SCAN_SHORT_CIRCUITED.log(cluster=cluster)
            count = sum(found)
            # Shared only once this job can no longer fail.
            progress.add(count)
            action.add_success_fields(count=count)
            return count

    def _count_in_cluster(self, cluster, volume_name, zone, progress,
                          found):
        """
        Append 1 to ``found`` for each task definition of ``cluster`` which
        declares the volume and has live tasks in ``zone``.

        :raise _ScanStopped: If other jobs have already settled the answer.
        """
        progress.check()
        container_instances = paginate_aws(
            self.ecs, "list_container_instances", "containerInstanceArns",
            cluster=cluster,
        )
        if not container_instances:
            return

        ec2_instance_of = {}
        for batch in batches(container_instances, _DESCRIBE_BATCH_SIZE):
            progress.check()
            response = call_aws(
                self.ecs, "describe_container_instances",
                cluster=cluster, containerInstances=batch,
            )
            for container_instance in response["containerInstances"]:
                ec2_instance_of[container_instance["containerInstanceArn"]] = (
                    container_instance["ec2InstanceId"])

        zone_instances = self._instances_in_zone(
            set(ec2_instance_of.values()), zone, progress)
        in_zone = {
            arn for (arn, instance) in ec2_instance_of.items()
            if instance in zone_instances
        }
        if not in_zone:
            return

        progress.check()
        task_arns = paginate_aws(
            self.ecs, "list_tasks", "taskArns", cluster=cluster)
        tasks_by_definition = defaultdict(list)
        for batch in batches(task_arns, _DESCRIBE_BATCH_SIZE):
            progress.check()
            response = call_aws(
                self.ecs, "describe_tasks", cluster=cluster, tasks=batch)
            for task in response["tasks"]:
                if task.get("containerInstanceArn") in in_zone:
                    tasks_by_definition[task["taskDefinitionArn"]].append(
                        task)

        for definition in sorted(tasks_by_definition):
            progress.check()
            response = call_aws(
                self.ecs, "describe_task_definition",
                taskDefinition=definition,
            )
            volumes = response["taskDefinition"].get("volumes", [])
            if not any(volume.get("name") == volume_name
                       for volume in volumes):
                continue
            live = len([
                task for task in tasks_by_definition[definition]
                if task.get("lastStatus") in LIVE_TASK_STATUSES
            ])
            if live:
                VOLUME_REFERENCED.log(
                    cluster=cluster, task_definition=definition,
                    live_tasks=live,
                )
                found.append(1)

    def _instances_in_zone(self, instance_ids, zone, progress):
        """
        :return: The subset of ``instance_ids`` placed in ``zone``.
        """
        result = set()
        for batch in batches(sorted(instance_ids), _DESCRIBE_BATCH_SIZE):
            progress.check()
            response = call_aws(
                self.ec2, "describe_instances", InstanceIds=batch)
            for reservation in response["Reservations"]:
                for instance in reservation["Instances"]:
                    placement = instance.get("Placement", {})
                    if placement.get("AvailabilityZone") == zone:
                        result.add(instance["InstanceId"])
        return result
