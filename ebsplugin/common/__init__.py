# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Shared components of the EBS volume plugin.
"""

__all__ = [
    'auto_threaded', 'in_threadpool', 'loop_until', 'timeout',
    'LoopExceeded',
]

from ._thread import auto_threaded, in_threadpool
from ._retry import loop_until, timeout, LoopExceeded
