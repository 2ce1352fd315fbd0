# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Various utilities to help with unit testing.
"""

__all__ = [
    'TestCase', 'CustomException', 'FakeClock', 'FakeSysModule',
    'random_name',
]

import io
from random import randrange

from twisted.internet.task import Clock

from ._base import TestCase


class CustomException(Exception):
    """
    An exception that will never be raised by real code, useful for
    testing.
    """


def random_name(case):
    """
    Return a short, random name.

    :param case: The ``TestCase`` the name is for; its method name prefixes
        the result so leaked resources can be traced to their test.
    :return: A ``unicode`` name.
    """
    return u"{}-{}".format(
        case.id().rsplit(u".", 1)[-1].replace(u"_", u""),
        randrange(10 ** 6))


class FakeClock(Clock):
    """
    A ``Clock`` which can stand in for real time in blocking code: sleeping
    advances it instead of waiting.

    :ivar list sleeps: Every interval slept, in order.
    """
    def __init__(self):
        Clock.__init__(self)
        self.sleeps = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.advance(seconds)


class FakeSysModule(object):
    """A ``sys`` like substitute.

    For use in testing the handling of `argv`, `stdout` and `stderr` by command
    line scripts.

    :ivar list argv: See ``__init__``
    :ivar stdout: A :py:class:`io.StringIO` representing standard output.
    :ivar stderr: A :py:class:`io.StringIO` representing standard error.
    """
    def __init__(self, argv=None):
        """Initialise the fake sys module.

        :param list argv: The arguments list which should be exposed as
            ``sys.argv``.
        """
        if argv is None:
            argv = []
        self.argv = argv
        self.stdout = io.StringIO()
        self.stderr = io.StringIO()
