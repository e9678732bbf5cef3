# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
A Docker volume plugin that attaches, formats and mounts EBS volumes on ECS
container instances.
"""

from ._version import __version__

# Every volume is mounted beneath this directory, at a path named after the
# volume:
MOUNT_ROOT = "/mnt"


def _redirect_eliot_logs_for_trial():
    """
    Enable Eliot logging to the ``_trial_temp/test.log`` file.
    """
    import os
    import sys
    if os.path.basename(sys.argv[0]) == "trial":
        from eliot.twisted import redirectLogsForTrial
        redirectLogsForTrial()
_redirect_eliot_logs_for_trial()
del _redirect_eliot_logs_for_trial

__all__ = ["__version__", "MOUNT_ROOT"]
