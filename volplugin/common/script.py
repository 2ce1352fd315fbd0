# -*- test-case-name: volplugin.common.test.test_script -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""Helpers for volplugin shell commands."""

import sys

from bitmath import MiB

from eliot import (
    FileDestination, add_destinations, remove_destination, write_traceback,
)

from twisted.python import usage
from twisted.python.filepath import FilePath
from twisted.python.logfile import LogFile

from zope.interface import Interface

from .. import __version__


__all__ = [
    'standard_options',
    'ICommandLineScript',
    'ScriptRunner',
]


LOGFILE_LENGTH = int(MiB(100).to_Byte().value)
LOGFILE_COUNT = 5


def standard_options(cls):
    """Add various standard command line options to volplugin commands.

    :param type cls: The `class` to decorate.
    :return: The decorated `class`.
    """
    original_init = cls.__init__

    def __init__(self, *args, **kwargs):
        """Set the default verbosity to `0`

        Calls the original ``cls.__init__`` method finally.

        :param sys_module: An optional ``sys`` like module for use in
            testing. Defaults to ``sys``.
        """
        self._sys_module = kwargs.pop('sys_module', sys)
        self['verbosity'] = 0
        self['logfile'] = self._sys_module.stderr
        original_init(self, *args, **kwargs)
    cls.__init__ = __init__

    def opt_version(self):
        """Print the program's version and exit."""
        self._sys_module.stdout.write(__version__ + '\n')
        raise SystemExit(0)
    cls.opt_version = opt_version

    def opt_verbose(self):
        """Turn on verbose logging."""
        self['verbosity'] += 1
    cls.opt_verbose = opt_verbose
    cls.opt_v = opt_verbose

    def opt_logfile(self, logfile_path):
        """
        Log to a file. Log is written to ``stderr`` by default. The logfile
        directory is created if it does not already exist.
        """
        logfile = FilePath(logfile_path)
        logfile_directory = logfile.parent()
        if not logfile_directory.exists():
            logfile_directory.makedirs()
        self['logfile'] = LogFile.fromFullPath(
            logfile.path,
            rotateLength=LOGFILE_LENGTH,
            maxRotatedFiles=LOGFILE_COUNT,
        )
    cls.opt_logfile = opt_logfile

    return cls


class ICommandLineScript(Interface):
    """A script which can be run by ``ScriptRunner``."""
    def main(options):
        """
        :param dict options: A dictionary of configuration options.
        :raise SystemExit: To exit with a particular status.
        """


class ScriptRunner(object):
    """An API for running standard volplugin scripts.

    :ivar ICommandLineScript script: See ``script`` of ``__init__``.
    """
    def __init__(self, script, options, logging=True, sys_module=None):
        """
        :param ICommandLineScript script: The script object to be run.
        :param usage.Options options: An option parser object.
        :param logging: If ``True``, log to the ``logfile`` option;
            otherwise don't log.
        :param sys_module: An optional ``sys`` like module for use in
            testing. Defaults to ``sys``.
        """
        self.script = script
        self.options = options
        self.logging = logging

        if sys_module is None:
            sys_module = sys
        self.sys_module = sys_module

    def _parse_options(self, arguments):
        """Parse the options defined in the script's options class.

        ``UsageError``s are caught and printed to `stderr` and the script then
        exits.

        :param list arguments: The command line arguments to be parsed.
        :return: A ``dict`` of configuration options.
        """
        try:
            self.options.parseOptions(arguments)
        except usage.UsageError as e:
            self.sys_module.stderr.write(str(self.options))
            self.sys_module.stderr.write('ERROR: ' + str(e) + '\n')
            raise SystemExit(1)
        return self.options

    def main(self):
        """Parse arguments and run the script's main function."""
        # If e.g. --version is called this may throw a SystemExit, so we
        # always do this first before any side-effecty code is run:
        options = self._parse_options(self.sys_module.argv[1:])

        destination = None
        if self.logging:
            destination = FileDestination(file=options['logfile'])
            add_destinations(destination)
        try:
            self.script.main(options)
        except usage.UsageError as e:
            self.sys_module.stderr.write('ERROR: ' + str(e) + '\n')
            raise SystemExit(1)
        except SystemExit:
            raise
        except Exception as e:
            write_traceback()
            self.sys_module.stderr.write('ERROR: ' + str(e) + '\n')
            raise SystemExit(1)
        finally:
            if destination is not None:
                remove_destination(destination)
