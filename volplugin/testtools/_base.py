# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Base classes for unit tests.
"""

from unittest import SkipTest

from fixtures import TempDir
import testtools

from twisted.python.filepath import FilePath


class _MktempMixin(object):
    """
    ``mktemp`` support for testtools TestCases.
    """

    def mktemp(self):
        """
        Create a temporary path for use in tests.

        Provided for compatibility with Twisted's ``TestCase``.

        :return: Path to non-existent file or directory.
        """
        return self.make_temporary_path().path

    def make_temporary_path(self):
        """
        Create a temporary path for use in tests.

        :return: Path to non-existent file or directory.
        :rtype: FilePath
        """
        return self.make_temporary_directory().child('temp')

    def make_temporary_directory(self):
        """
        Create a temporary directory for use in tests.  It is removed when
        the test finishes.

        :return: Path to directory.
        :rtype: FilePath
        """
        return FilePath(self.useFixture(TempDir()).path)


class TestCase(testtools.TestCase, _MktempMixin):
    """
    Base class for synchronous test cases.
    """
    # Eliot's validateLogging hard-codes a check for SkipTest when deciding
    # whether to check for valid logging, which is fair enough, since there's
    # no other API for checking whether a test has skipped. Setting
    # skipException tells testtools to treat unittest.SkipTest as the
    # exception that signals skipping.
    skipException = SkipTest
