# -*- test-case-name: volplugin.storage.backend.ebs.test.test_driver -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
An EBS implementation of the ``ICRUDDriver`` and ``IMountDriver`` storage
driver interfaces.

Each public operation is a fixed sequence of steps.  No operation is retried
here beyond the bounded waits for remote state changes and the bounded
retries of unmounting; callers own retries of whole operations.
"""

from contextlib import contextmanager
from itertools import repeat

from bitmath import Byte, GiB

from twisted.python.filepath import FilePath, InsecurePath

from zope.interface import implementer

from ....common import LoopExceeded, SystemClock, poll_until
from ...driver import ICRUDDriver, IMountDriver, ListOptions, Mount, Volume
from ...mount import MountManager, UnmountError
from ._client import EC2Configuration
from ._devices import (
    NoAvailableDevice, UnattachedVolume, find_device_for_volume,
    find_free_device,
)
from ._logging import COMPENSATION_FAILED, DRIVER_ACTION, UNMOUNT_RETRY
from ._metadata import InstanceMetadata, MetadataUnavailable
from ._volumes import (
    AmbiguousVolumeName, EBSVolumeTypes, UnknownInstanceID, UnknownVolume,
    VolumeConfig, attach_volume_synchronously, create_volume_synchronously,
    delete_volume_synchronously, describe_instance,
    detach_volume_synchronously, list_tagged_volumes, resolve_volume_id,
    tag_volume_name, untag_volume_name,
)

BACKEND_NAME = u"ebs"
DEFAULT_MOUNTPATH = u"/mnt/ebs"

GIB = int(GiB(1).to_Byte().value)

DEFAULT_VOLUME_TYPE = EBSVolumeTypes.GP2.value
PROVISIONED_IOPS_TYPES = (EBSVolumeTypes.IO1.value, EBSVolumeTypes.IO2.value)
IOPS_TYPES = PROVISIONED_IOPS_TYPES + (EBSVolumeTypes.GP3.value,)
DEFAULT_IOPS = 100
MIN_PROVISIONED_IOPS_SIZE = 4

UNMOUNT_ATTEMPTS = 3
UNMOUNT_RETRY_INTERVAL = 0.1


class InvalidVolumeSize(Exception):
    """
    A volume size is not a positive whole number of GiB.

    :ivar int size: The rejected size in bytes.
    """
    def __init__(self, size):
        Exception.__init__(self, size)
        self.size = size

    def __str__(self):
        return "volume size {} is not a positive multiple of 1 GiB".format(
            self.size)


class InvalidVolumeName(Exception):
    """
    A volume name cannot be mapped to a mount directory.

    :ivar unicode name: The rejected name.
    :ivar unicode reason: Why it was rejected.
    """
    def __init__(self, name, reason):
        Exception.__init__(self, name, reason)
        self.name = name
        self.reason = reason

    def __str__(self):
        return "invalid volume name {!r}: {}".format(self.name, self.reason)


class MissingRegion(Exception):
    """
    The ``region`` parameter was not supplied.
    """
    def __str__(self):
        return "the region parameter is required"


class InvalidVolumeParameter(Exception):
    """
    A backend-specific volume parameter has an unusable value.

    :ivar unicode parameter: The parameter name.
    :ivar unicode value: Its value.
    :ivar unicode reason: Why it was rejected.
    """
    def __init__(self, parameter, value, reason):
        Exception.__init__(self, parameter, value, reason)
        self.parameter = parameter
        self.value = value
        self.reason = reason

    def __str__(self):
        return "invalid {} {!r}: {}".format(
            self.parameter, self.value, self.reason)


class StepFailed(Exception):
    """
    One step of a driver operation failed.

    :ivar unicode step: What was being done, e.g. ``attach volume``.
    :ivar unicode volume_name: The volume it was done to.
    :ivar Exception reason: The error the step raised.
    """
    def __init__(self, step, volume_name, reason):
        Exception.__init__(self, step, volume_name, reason)
        self.step = step
        self.volume_name = volume_name
        self.reason = reason

    def __str__(self):
        return "failed to {} for volume {!r}: {}".format(
            self.step, self.volume_name, self.reason)


class UnmountFailed(Exception):
    """
    A volume could not be unmounted within the allowed number of attempts.
    It is left attached.

    :ivar unicode mountpoint: The mount directory.
    :ivar list errors: The error raised by each attempt.
    """
    def __init__(self, mountpoint, errors):
        Exception.__init__(self, mountpoint, errors)
        self.mountpoint = mountpoint
        self.errors = errors

    def __str__(self):
        return "failed to unmount {} after {} attempts: {}".format(
            self.mountpoint, len(self.errors),
            "; ".join(str(error) for error in self.errors))


# Errors which already identify what went wrong and are never wrapped in
# ``StepFailed``.
_UNWRAPPED = (
    StepFailed, UnknownVolume, AmbiguousVolumeName, UnknownInstanceID,
    MetadataUnavailable, NoAvailableDevice, UnattachedVolume,
)


@contextmanager
def _step(step, volume_name):
    """
    Attribute any failure of the enclosed code to ``step``.
    """
    try:
        yield
    except _UNWRAPPED:
        raise
    except Exception as e:
        raise StepFailed(step, volume_name, e) from e


def get_volume_size_in_gib(size):
    """
    Convert a size in bytes to the whole number of GiB EBS expects.

    :param int size: Size in bytes.

    :raise InvalidVolumeSize: If ``size`` is below 1 GiB or is not a whole
        number of GiB.
    :return: The ``int`` size in GiB.
    """
    if size < GIB or size % GIB:
        raise InvalidVolumeSize(size)
    return int(Byte(size).to_GiB().value)


def template_fs_command(template, device):
    """
    Build a format command from ``template``.  Each ``%`` is replaced with
    ``device`` and each ``%%`` with a literal ``%``; nothing else is
    interpreted.

    :param unicode template: e.g. ``mkfs.ext4 -m0 %``.
    :param unicode device: The device path.
    :return: The ``unicode`` command.
    """
    pieces = []
    index = 0
    while index < len(template):
        char = template[index]
        if char == u"%":
            if template[index + 1:index + 2] == u"%":
                pieces.append(u"%")
                index += 2
                continue
            pieces.append(device)
        else:
            pieces.append(char)
        index += 1
    return u"".join(pieces)


def internal_name(name):
    """
    Map ``tenant/volume`` to the single path segment ``tenant.volume``.

    :raise InvalidVolumeName: If ``name`` is not of that form, or either part
        could make the mapping ambiguous.
    """
    policy, separator, volume = name.partition(u"/")
    if not separator or not policy or not volume:
        raise InvalidVolumeName(name, u"expected tenant/volume")
    if u"." in policy:
        raise InvalidVolumeName(name, u"tenant may not contain '.'")
    if u"/" in volume:
        raise InvalidVolumeName(name, u"volume may not contain '/'")
    return policy + u"." + volume


def _region(params):
    region = params.get(u"region")
    if not region:
        raise MissingRegion()
    return region


def _volume_parameters(volume):
    """
    Check the parameters needed to create ``volume``.

    :return: A ``(size_in_gib, volume_type, iops)`` tuple.
    """
    size = get_volume_size_in_gib(volume.size)
    volume_type = volume.params.get(u"volumetype", DEFAULT_VOLUME_TYPE)
    try:
        EBSVolumeTypes.lookupByValue(volume_type)
    except ValueError:
        raise InvalidVolumeParameter(
            u"volumetype", volume_type, u"unknown volume type")

    iops = volume.params.get(u"iops")
    if iops is not None:
        if volume_type not in IOPS_TYPES:
            raise InvalidVolumeParameter(
                u"iops", iops,
                u"not supported by {} volumes".format(volume_type))
        try:
            iops = int(iops)
        except ValueError:
            raise InvalidVolumeParameter(u"iops", iops, u"not an integer")
        if iops <= 0:
            raise InvalidVolumeParameter(u"iops", iops, u"must be positive")

    if volume_type in PROVISIONED_IOPS_TYPES:
        if iops is None:
            iops = DEFAULT_IOPS
        if size < MIN_PROVISIONED_IOPS_SIZE:
            raise InvalidVolumeParameter(
                u"volumetype", volume_type,
                u"requires a size of at least {} GiB".format(
                    MIN_PROVISIONED_IOPS_SIZE))
    return size, volume_type, iops


@implementer(ICRUDDriver, IMountDriver)
class EBSDriver(object):
    """
    Manage EBS volumes named by a ``tenant/volume`` tag, and mount them
    beneath ``mountpath`` on this EC2 instance.

    :ivar unicode mountpath: The directory beneath which volumes are mounted.
    :ivar EC2Configuration ec2: Builds the EC2 client for each region.
    :ivar InstanceMetadata metadata: Identity of this instance.
    :ivar IMountManager mount_manager: The local OS surface.
    :ivar clock: Provides ``seconds()`` and ``sleep()`` for every wait.
    """
    def __init__(self, mountpath=DEFAULT_MOUNTPATH, ec2=None, metadata=None,
                 mount_manager=None, clock=None):
        self.mountpath = mountpath
        self.ec2 = EC2Configuration() if ec2 is None else ec2
        self.metadata = InstanceMetadata() if metadata is None else metadata
        if mount_manager is None:
            mount_manager = MountManager()
        self.mount_manager = mount_manager
        self.clock = SystemClock() if clock is None else clock

    def name(self):
        return BACKEND_NAME

    def _validate(self, options):
        options.validate()
        _region(options.volume.params)
        internal_name(options.volume.name)
        return _volume_parameters(options.volume)

    def validate(self, options):
        with DRIVER_ACTION(driver_operation=u"validate",
                           volume_name=options.volume.name):
            self._validate(options)

    def _client(self, params):
        return self.ec2.client(_region(params))

    def _instance(self, client, volume_name):
        """
        Find this instance and the devices currently attached to it.

        :return: A ``(instance_id, block_device_mappings)`` tuple.
        """
        instance_id = self.metadata.instance_id()
        with _step(u"describe instance", volume_name):
            instance = describe_instance(client, instance_id)
        return instance_id, instance.get(u'BlockDeviceMappings', [])

    def _attach(self, client, volume_name, timeout):
        """
        Attach the named volume to this instance at a free device.

        :return: A ``(volume_id, instance_id, device)`` tuple.
        """
        volume_id = resolve_volume_id(client, volume_name)
        instance_id, mappings = self._instance(client, volume_name)
        device = find_free_device(mappings)
        with _step(u"attach volume", volume_name):
            attach_volume_synchronously(
                client, volume_id, instance_id, device,
                self.mount_manager.device_exists, timeout, clock=self.clock)
        return volume_id, instance_id, device

    def _detach(self, client, volume_name, volume_id, instance_id, device,
                force, timeout):
        with _step(u"detach volume", volume_name):
            detach_volume_synchronously(
                client, volume_id, instance_id, device, force,
                self.mount_manager.device_exists, timeout, clock=self.clock)

    def create(self, options):
        volume_name = options.volume.name
        with DRIVER_ACTION(driver_operation=u"create",
                           volume_name=volume_name):
            size, volume_type, iops = self._validate(options)
            client = self._client(options.volume.params)
            availability_zone = options.volume.params.get(u"availabilityzone")
            if not availability_zone:
                availability_zone = self.metadata.availability_zone()
            config = VolumeConfig(
                availability_zone=availability_zone, size=size, iops=iops,
                volume_type=volume_type,
            )
            with _step(u"create volume", volume_name):
                volume = create_volume_synchronously(
                    client, config, options.timeout.total_seconds(),
                    clock=self.clock)
            # A failure here leaves an untagged volume behind.
            with _step(u"tag volume", volume_name):
                tag_volume_name(client, volume[u'VolumeId'], volume_name)

    def format(self, options):
        volume_name = options.volume.name
        timeout = options.timeout.total_seconds()
        with DRIVER_ACTION(driver_operation=u"format",
                           volume_name=volume_name):
            options.validate()
            client = self._client(options.volume.params)
            volume_id, instance_id, device = self._attach(
                client, volume_name, timeout)
            command = template_fs_command(
                options.fs_options.create_command, device)
            try:
                with _step(u"format volume", volume_name):
                    self.mount_manager.make_filesystem(
                        command, device, timeout)
            except StepFailed:
                try:
                    self._detach(client, volume_name, volume_id, instance_id,
                                 device, True, timeout)
                except StepFailed as e:
                    COMPENSATION_FAILED.log(
                        volume_name=volume_name, step=e.step,
                        reason=str(e.reason),
                    )
                raise
            self._detach(client, volume_name, volume_id, instance_id,
                         device, True, timeout)

    def destroy(self, options):
        volume_name = options.volume.name
        with DRIVER_ACTION(driver_operation=u"destroy",
                           volume_name=volume_name):
            options.validate()
            client = self._client(options.volume.params)
            volume_id = resolve_volume_id(client, volume_name)
            # Untag first so a half finished delete does not leave a volume
            # answering to its old name.
            with _step(u"untag volume", volume_name):
                untag_volume_name(client, volume_id, volume_name)
            with _step(u"delete volume", volume_name):
                delete_volume_synchronously(
                    client, volume_id, options.timeout.total_seconds(),
                    clock=self.clock)

    def list(self, options):
        with DRIVER_ACTION(driver_operation=u"list", volume_name=u""):
            client = self._client(options.params)
            return [
                Volume(name=name)
                for _, name in list_tagged_volumes(client)
            ]

    def exists(self, options):
        volume_name = options.volume.name
        with DRIVER_ACTION(driver_operation=u"exists",
                           volume_name=volume_name):
            volumes = self.list(ListOptions(params=options.volume.params))
            return any(volume.name == volume_name for volume in volumes)

    def mount_path(self, options):
        name = options.volume.name
        try:
            return FilePath(self.mountpath).child(internal_name(name)).path
        except InsecurePath:
            raise InvalidVolumeName(name, u"escapes the mount directory")

    def mount(self, options):
        volume_name = options.volume.name
        with DRIVER_ACTION(driver_operation=u"mount",
                           volume_name=volume_name):
            options.validate()
            path = self.mount_path(options)
            client = self._client(options.volume.params)
            volume_id, instance_id, device = self._attach(
                client, volume_name, options.timeout.total_seconds())
            # A failure from here on leaves the volume attached.
            with _step(u"create mount directory", volume_name):
                self.mount_manager.make_mountpoint(path)
            with _step(u"examine device", volume_name):
                dev_major, dev_minor = self.mount_manager.device_numbers(
                    device)
            with _step(u"mount volume", volume_name):
                self.mount_manager.mount(
                    device, path, options.fs_options.type)
            return Mount(
                device=device, path=path, volume=options.volume,
                dev_major=dev_major, dev_minor=dev_minor,
            )

    def _tear_down(self, path):
        """
        Unmount ``path`` and remove the directory, trying up to
        ``UNMOUNT_ATTEMPTS`` times.  A failed removal starts over with
        unmounting, which is harmless if ``path`` is no longer mounted.

        :raise UnmountFailed: If every attempt fails.
        """
        errors = []

        def attempt():
            try:
                self.mount_manager.unmount(path)
                self.mount_manager.remove_mountpoint(path)
            except (UnmountError, OSError) as e:
                errors.append(e)
                UNMOUNT_RETRY.log(mountpoint=path, attempt=len(errors),
                                  reason=str(e))
                return False
            return True

        try:
            poll_until(
                attempt,
                repeat(UNMOUNT_RETRY_INTERVAL, UNMOUNT_ATTEMPTS - 1),
                sleep=self.clock.sleep,
            )
        except LoopExceeded:
            raise UnmountFailed(path, errors)

    def unmount(self, options):
        volume_name = options.volume.name
        with DRIVER_ACTION(driver_operation=u"unmount",
                           volume_name=volume_name):
            options.validate()
            path = self.mount_path(options)
            client = self._client(options.volume.params)
            volume_id = resolve_volume_id(client, volume_name)
            instance_id, mappings = self._instance(client, volume_name)
            device = find_device_for_volume(mappings, volume_id)
            # Never detach a volume whose mount could not be torn down.
            self._tear_down(path)
            self._detach(client, volume_name, volume_id, instance_id, device,
                         False, options.timeout.total_seconds())

    def mounted(self, timeout):
        # Mounts are not tracked; discovering them is not implemented.
        return []


def crud_driver(ec2=None, metadata=None, mount_manager=None, clock=None):
    """
    :return: An ``ICRUDDriver`` provider for EBS.
    """
    return EBSDriver(ec2=ec2, metadata=metadata, mount_manager=mount_manager,
                     clock=clock)


def mount_driver(mountpath, ec2=None, metadata=None, mount_manager=None,
                 clock=None):
    """
    :param unicode mountpath: The directory beneath which to mount volumes.
    :return: An ``IMountDriver`` provider for EBS.
    """
    return EBSDriver(mountpath=mountpath, ec2=ec2, metadata=metadata,
                     mount_manager=mount_manager, clock=clock)
