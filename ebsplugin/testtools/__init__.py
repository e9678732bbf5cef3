# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Helpers shared by the unit tests of every package.
"""

from io import StringIO

from ._base import TestCase

__all__ = [
    "TestCase", "CustomException", "FakeSysModule",
]


class CustomException(Exception):
    """
    Raised by tests to stand for an unexpected error; no real code raises it.
    """


class FakeSysModule(object):
    """
    Stands in for ``sys`` when testing how a command handles its arguments
    and output.

    :ivar list argv: The command line.
    :ivar StringIO stdout: Everything written to standard output.
    :ivar StringIO stderr: Everything written to standard error.
    """
    def __init__(self, argv=()):
        self.argv = list(argv)
        self.stdout = StringIO()
        self.stderr = StringIO()
