# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Moving EBS volumes between EC2 instances safely.
"""

__all__ = [
    "AttachmentController", "AttachmentKinds", "ControlPlaneError",
    "EC2VolumeAPI", "InUseScanner", "NodeIdentity", "ThreadedEC2VolumeAPI",
    "UnknownVolume", "VolumeBusy", "aws_session", "resolve_identity",
]

from ._boto import ControlPlaneError, aws_session
from .ec2 import EC2VolumeAPI, ThreadedEC2VolumeAPI, UnknownVolume
from .attachment import AttachmentController, AttachmentKinds, VolumeBusy
from .inuse import InUseScanner
from .metadata import NodeIdentity, resolve_identity
