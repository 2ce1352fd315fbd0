# -*- test-case-name: volplugin.storage.test.test_mount -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Interactions between the OS pertaining to block devices.
This controls actions such as formatting and mounting a block device.
"""

import errno
import os
from subprocess import CalledProcessError

from zope.interface import Interface, implementer

from pyrsistent import PClass

from twisted.python.filepath import FilePath

from ..common.process import run_process, ProcessTimeout


# umount on Ubuntu 14.04 returns 1 when the target is not mounted. On newer OS
# the return code is 32.
_NOT_MOUNTED_STATUSES = (1, 32)


class MakeFilesystemError(Exception):
    """
    Raised from errors while making a filesystem on a block device.

    :ivar unicode blockdevice: The path to the block device that was
        being formatted when the error occurred.
    :ivar unicode command: The command which was run.
    :ivar unicode source_message: The error message describing the error.
    """
    def __init__(self, blockdevice, command, source_message):
        Exception.__init__(self, blockdevice, command, source_message)
        self.blockdevice = blockdevice
        self.command = command
        self.source_message = source_message

    def __str__(self):
        return "Error creating filesystem on {} with cmd: {!r}: {}".format(
            self.blockdevice, self.command, self.source_message)


class MountError(Exception):
    """
    Raised from errors while mounting a block device.

    :ivar unicode blockdevice: The path to the block device that was
        being mounted when the error occurred.
    :ivar unicode mountpoint: The path that the block device was going to be
        mounted at when the error occurred.
    :ivar unicode source_message: The error message describing the error.
    """
    def __init__(self, blockdevice, mountpoint, source_message):
        Exception.__init__(self, blockdevice, mountpoint, source_message)
        self.blockdevice = blockdevice
        self.mountpoint = mountpoint
        self.source_message = source_message


class UnmountError(Exception):
    """
    Raised from errors while unmounting.

    :ivar unicode mountpoint: The path that was being unmounted.
    :ivar unicode source_message: The error message describing the error.
    """
    def __init__(self, mountpoint, source_message):
        Exception.__init__(self, mountpoint, source_message)
        self.mountpoint = mountpoint
        self.source_message = source_message


class DeviceStatError(Exception):
    """
    A block device could not be examined.

    :ivar unicode blockdevice: The device path.
    :ivar unicode source_message: The error message describing the error.
    """
    def __init__(self, blockdevice, source_message):
        Exception.__init__(self, blockdevice, source_message)
        self.blockdevice = blockdevice
        self.source_message = source_message


def _output(error):
    return error.output.decode("utf-8", "replace").strip()


class IMountManager(Interface):
    """
    An interface for interactions with the OS pertaining to block devices
    and the directories they are mounted on.
    """

    def device_exists(blockdevice):
        """
        :param unicode blockdevice: A device path such as ``/dev/xvdf``.
        :return: ``True`` if the OS currently exposes the device node.
        """

    def device_numbers(blockdevice):
        """
        :param unicode blockdevice: A device path.
        :raises: ``DeviceStatError`` if the device cannot be examined.
        :return: A ``(major, minor)`` tuple of ``int``.
        """

    def make_filesystem(command, blockdevice, timeout):
        """
        Run ``command`` with ``/bin/sh``; it is expected to create a
        filesystem on ``blockdevice``.

        :param unicode command: The shell command, already templated.
        :param unicode blockdevice: The device being formatted.
        :param float timeout: Seconds after which the command is killed.

        :raises: ``MakeFilesystemError`` on a non-zero exit or timeout.
        """

    def make_mountpoint(mountpoint):
        """
        Create the directory ``mountpoint`` and any missing parents, with
        mode 0700.  An existing directory is not an error.

        :param unicode mountpoint: The directory path.
        """

    def remove_mountpoint(mountpoint):
        """
        Remove the (empty) directory ``mountpoint``.  A missing directory is
        not an error.

        :param unicode mountpoint: The directory path.
        """

    def mount(blockdevice, mountpoint, filesystem_type):
        """
        Mount ``blockdevice`` at ``mountpoint``.

        :raises: ``MountError`` on any failure from the system.
        """

    def unmount(mountpoint):
        """
        Unmount whatever is mounted at ``mountpoint``.  A target which is not
        mounted is treated as already unmounted.

        :raises: ``UnmountError`` on any other failure from the system.
        """


@implementer(IMountManager)
class MountManager(PClass):
    """
    Real implementation of ``IMountManager``.
    """
    def device_exists(self, blockdevice):
        return FilePath(blockdevice).exists()

    def device_numbers(self, blockdevice):
        try:
            rdev = os.stat(blockdevice).st_rdev
        except OSError as e:
            raise DeviceStatError(blockdevice=blockdevice,
                                  source_message=e.strerror)
        return os.major(rdev), os.minor(rdev)

    def make_filesystem(self, command, blockdevice, timeout):
        try:
            run_process(["/bin/sh", "-c", command],
                        timeout=timeout, start_new_session=True)
        except CalledProcessError as e:
            raise MakeFilesystemError(blockdevice=blockdevice,
                                      command=command,
                                      source_message=_output(e))
        except ProcessTimeout as e:
            raise MakeFilesystemError(
                blockdevice=blockdevice, command=command,
                source_message=u"timed out after {}s".format(e.timeout))

    def make_mountpoint(self, mountpoint):
        path = FilePath(mountpoint)
        missing = []
        parent = path
        while not parent.exists():
            missing.append(parent)
            parent = parent.parent()
        for directory in reversed(missing):
            directory.makedirs(ignoreExistingDirectory=True)
            directory.chmod(0o700)
        path.chmod(0o700)

    def remove_mountpoint(self, mountpoint):
        try:
            # Only ever an empty directory; never recurse into a mount.
            os.rmdir(mountpoint)
        except OSError as e:
            if e.errno != errno.ENOENT:
                raise

    def mount(self, blockdevice, mountpoint, filesystem_type):
        try:
            run_process(
                ["mount", "-t", filesystem_type, blockdevice, mountpoint])
        except CalledProcessError as e:
            raise MountError(blockdevice=blockdevice, mountpoint=mountpoint,
                             source_message=_output(e))

    def unmount(self, mountpoint):
        try:
            run_process(["umount", mountpoint])
        except CalledProcessError as e:
            if e.returncode in _NOT_MOUNTED_STATUSES:
                return
            raise UnmountError(mountpoint=mountpoint,
                               source_message=_output(e))
