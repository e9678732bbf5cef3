# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Docker volume plugin which mounts EBS volumes on the local EC2 instance.

``VolumePlugin`` answers Docker's requests, handing mounts to a
``MountOrchestrator``.  The ``ebs-docker-plugin`` command serves it on a
Unix socket.
"""

from ._api import VolumePlugin, DEFAULT_MOUNT_TIMEOUT
from ._orchestrator import MountOrchestrator, MountPhaseError, Phases

__all__ = [
    "VolumePlugin", "DEFAULT_MOUNT_TIMEOUT", "MountOrchestrator",
    "MountPhaseError", "Phases",
]
