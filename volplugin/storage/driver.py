# -*- test-case-name: volplugin.storage.test.test_driver -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The generic storage-driver abstraction implemented by each backend.

A backend provides two narrow capability sets: ``ICRUDDriver`` for the
lifecycle of remote volumes and ``IMountDriver`` for exposing them on the
local host.  Callers depend only on the one they need.
"""

from datetime import timedelta

from pyrsistent import PClass, field, pmap_field
from zope.interface import Attribute, Interface


class InvalidDriverOptions(Exception):
    """
    ``DriverOptions`` are structurally unusable.

    :ivar unicode reason: What is wrong with them.
    """
    def __init__(self, reason):
        Exception.__init__(self, reason)
        self.reason = reason


class Volume(PClass):
    """
    A volume as seen by the orchestrator.

    :ivar unicode name: The hierarchical ``tenant/volume`` name.
    :ivar int size: The requested size in bytes.
    :ivar PMap params: Backend-specific parameters, e.g. ``region``.
    """
    name = field(type=str, mandatory=True)
    size = field(type=int, initial=0)
    params = pmap_field(str, str)


class FSOptions(PClass):
    """
    How to create the filesystem on a volume.

    :ivar unicode type: The filesystem type handed to ``mount``.
    :ivar unicode create_command: A command template in which ``%`` is
        replaced by the device path and ``%%`` is a literal ``%``.
    """
    type = field(type=str, initial=u"ext4")
    create_command = field(type=str, initial=u"mkfs.ext4 -m0 %")


class DriverOptions(PClass):
    """
    Everything a driver operation needs to know about a single volume.

    :ivar Volume volume: The volume being operated on.
    :ivar FSOptions fs_options: Filesystem options for ``format``/``mount``.
    :ivar timedelta timeout: The bound on each wait for a remote state
        change and on the format command.
    """
    volume = field(type=Volume, mandatory=True)
    fs_options = field(type=FSOptions, initial=FSOptions())
    timeout = field(type=timedelta, initial=timedelta(seconds=60))

    def validate(self):
        """
        Check the options are structurally usable.

        :raise InvalidDriverOptions: If they are not.
        """
        if not self.volume.name:
            raise InvalidDriverOptions(u"volume name is empty")
        if self.volume.size < 0:
            raise InvalidDriverOptions(
                u"volume size {} is negative".format(self.volume.size))
        if self.timeout <= timedelta(0):
            raise InvalidDriverOptions(
                u"timeout {} is not positive".format(self.timeout))


class ListOptions(PClass):
    """
    :ivar PMap params: Backend-specific parameters, e.g. ``region``.
    """
    params = pmap_field(str, str)


class Mount(PClass):
    """
    A volume mounted on this host.

    :ivar unicode device: The device path of the attached volume.
    :ivar unicode path: The directory it is mounted on.
    :ivar Volume volume: The mounted volume.
    :ivar int dev_major: The major number of ``device``.
    :ivar int dev_minor: The minor number of ``device``.
    """
    device = field(type=str, mandatory=True)
    path = field(type=str, mandatory=True)
    volume = field(type=Volume, mandatory=True)
    dev_major = field(type=int, mandatory=True)
    dev_minor = field(type=int, mandatory=True)


class ICRUDDriver(Interface):
    """
    Create, format, enumerate and destroy remote volumes.
    """
    def name():
        """
        :return: The fixed ``unicode`` identifier of the backend.
        """

    def create(options):
        """
        Create the remote volume described by ``options.volume``.

        :param DriverOptions options: The volume to create.
        """

    def format(options):
        """
        Create a filesystem on the volume using
        ``options.fs_options.create_command``.

        :param DriverOptions options: The volume to format.
        """

    def destroy(options):
        """
        Destroy the remote volume.

        :param DriverOptions options: The volume to destroy.
        """

    def exists(options):
        """
        :param DriverOptions options: The volume to look for.
        :return: ``True`` if a volume with that name exists.
        """

    def list(options):
        """
        :param ListOptions options: Where to look.
        :return: A ``list`` of ``Volume``.
        """

    def validate(options):
        """
        Check ``options`` without contacting any remote service.

        :param DriverOptions options: The options to check.
        """


class IMountDriver(Interface):
    """
    Expose remote volumes on the local host.
    """
    mountpath = Attribute("The directory beneath which volumes are mounted.")

    def name():
        """
        :return: The fixed ``unicode`` identifier of the backend.
        """

    def mount(options):
        """
        Attach and mount the volume.

        :param DriverOptions options: The volume to mount.
        :return: A ``Mount``.
        """

    def mount_path(options):
        """
        Compute where the volume is or would be mounted.  Pure.

        :param DriverOptions options: The volume.
        :return: The ``unicode`` directory path.
        """

    def unmount(options):
        """
        Unmount and detach the volume.

        :param DriverOptions options: The volume to unmount.
        """

    def mounted(timeout):
        """
        :param timedelta timeout: The bound on the query.
        :return: A ``list`` of ``Mount`` known to be mounted.
        """

    def validate(options):
        """
        Check ``options`` without contacting any remote service.

        :param DriverOptions options: The options to check.
        """
