# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The test case every unit test in the project derives from.
"""

import tempfile
from unittest import SkipTest

import testtools
from testtools.twistedsupport import CaptureTwistedLogs

from twisted.python.filepath import FilePath
from twisted.trial.unittest import SynchronousTestCase


def _discard(path):
    """
    Remove ``path`` and anything beneath it unless a test already did.
    """
    path.restat(False)
    if path.exists():
        path.remove()


class TestCase(testtools.TestCase):
    """
    A ``testtools`` test case with temporary directories and the synchronous
    ``Deferred`` assertions of trial.
    """
    # Eliot's capture_logging only recognizes unittest's SkipTest.
    skipException = SkipTest

    successResultOf = SynchronousTestCase.successResultOf
    failureResultOf = SynchronousTestCase.failureResultOf
    assertNoResult = SynchronousTestCase.assertNoResult
    # Used by the three above.
    assertIdentical = SynchronousTestCase.assertIdentical

    def setUp(self):
        super(TestCase, self).setUp()
        self.useFixture(CaptureTwistedLogs())

    def make_temporary_directory(self):
        """
        :return: A new, empty directory ``FilePath``, removed after the test.
        """
        test_name = self.id().rsplit(".", 1)[-1]
        directory = FilePath(tempfile.mkdtemp(prefix=test_name + "-"))
        self.addCleanup(_discard, directory)
        return directory

    def make_temporary_path(self):
        """
        :return: A ``FilePath`` that doesn't exist yet, inside a directory
            removed after the test.
        """
        return self.make_temporary_directory().child("temp")
