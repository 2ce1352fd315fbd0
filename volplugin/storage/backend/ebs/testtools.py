# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
In-memory fakes of EC2, the instance metadata service and the local OS
surface, for testing the EBS driver without AWS or root privileges.

State changes that EC2 performs asynchronously complete after ``delay``
seconds of a ``twisted.internet.task.Clock``, so the same clock can be handed
to the driver to make waiting instantaneous.
"""

from copy import deepcopy
from itertools import count

from botocore.exceptions import ClientError

from zope.interface import implementer

from ...mount import (
    IMountManager, MountManager, DeviceStatError, MakeFilesystemError,
    MountError, UnmountError,
)
from ._metadata import MetadataUnavailable
from ._volumes import NOT_FOUND

FAKE_INSTANCE_ID = u"i-0123456789abcdef0"
FAKE_AVAILABILITY_ZONE = u"eu-central-1a"

# Xen virtual block devices.
XVD_MAJOR = 202


def client_error(code, operation_name, message=u"injected failure"):
    """
    :return: A ``ClientError`` like the ones boto3 raises for ``code``.
    """
    return ClientError(
        {u'Error': {u'Code': code, u'Message': message},
         u'ResponseMetadata': {u'RequestId': u'fake-request'}},
        operation_name,
    )


class FakeEC2(object):
    """
    A single-account fake of the subset of the boto3 EC2 client used by the
    EBS driver.  It also stands in for ``EC2Configuration``: ``client``
    returns the fake itself whatever the region.

    :ivar clock: The ``IReactorTime`` which completes state changes.
    :ivar float delay: Seconds each asynchronous state change takes; ``0``
        completes them before the initiating call returns.
    :ivar dict volumes: Volume descriptions by volume ID.
    :ivar dict tags: ``{volume_id: {key: value}}``.
    :ivar dict instances: Block device mappings by instance ID.
    :ivar set devices: Device paths currently exposed to the OS.
    :ivar list regions: The region of every ``client`` call.
    :ivar int page_size: Maximum number of tags per ``describe_tags`` page.
    """
    def __init__(self, clock, delay=1.0, instance_ids=(FAKE_INSTANCE_ID,)):
        self.clock = clock
        self.delay = delay
        self.volumes = {}
        self.tags = {}
        self.instances = {
            instance_id: [{u'DeviceName': u'/dev/xvda',
                           u'Ebs': {u'VolumeId': u'vol-root',
                                    u'Status': u'attached'}}]
            for instance_id in instance_ids
        }
        self.devices = {u'/dev/xvda'}
        self.regions = []
        self.page_size = 1000
        self._failures = {}
        self._ids = count(1)

    def client(self, region):
        self.regions.append(region)
        return self

    def fail_next(self, method, code=u'InternalError'):
        """
        Make the next call of ``method`` raise a ``ClientError`` with
        ``code``.
        """
        self._failures[method] = code

    def _check_failure(self, method):
        code = self._failures.pop(method, None)
        if code is not None:
            raise client_error(code, method)

    def _later(self, change):
        if self.delay:
            self.clock.callLater(self.delay, change)
        else:
            change()

    def _volume(self, volume_id, method):
        try:
            return self.volumes[volume_id]
        except KeyError:
            raise client_error(NOT_FOUND, method, u"no such volume")

    def create_volume(self, AvailabilityZone, Size, VolumeType, Iops=None):
        self._check_failure(u'create_volume')
        volume_id = u"vol-{:017x}".format(next(self._ids))
        volume = {
            u'VolumeId': volume_id, u'Size': Size,
            u'AvailabilityZone': AvailabilityZone,
            u'VolumeType': VolumeType, u'State': u'creating',
            u'Attachments': [],
        }
        if Iops is not None:
            volume[u'Iops'] = Iops
        self.volumes[volume_id] = volume

        def available():
            volume[u'State'] = u'available'
        self._later(available)
        return deepcopy(volume)

    def describe_volumes(self, VolumeIds):
        self._check_failure(u'describe_volumes')
        return {u'Volumes': [
            deepcopy(self._volume(volume_id, u'describe_volumes'))
            for volume_id in VolumeIds
        ]}

    def attach_volume(self, VolumeId, InstanceId, Device):
        self._check_failure(u'attach_volume')
        volume = self._volume(VolumeId, u'attach_volume')
        if volume[u'State'] != u'available':
            raise client_error(u'VolumeInUse', u'attach_volume')
        attachment = {
            u'VolumeId': VolumeId, u'InstanceId': InstanceId,
            u'Device': Device, u'State': u'attaching',
        }
        mapping = {u'DeviceName': Device,
                   u'Ebs': {u'VolumeId': VolumeId, u'Status': u'attaching'}}
        volume[u'State'] = u'in-use'
        volume[u'Attachments'] = [attachment]
        self.instances[InstanceId].append(mapping)

        def attached():
            attachment[u'State'] = u'attached'
            mapping[u'Ebs'][u'Status'] = u'attached'
            self.devices.add(Device)
        self._later(attached)
        return deepcopy(attachment)

    def detach_volume(self, VolumeId, InstanceId, Device, Force):
        self._check_failure(u'detach_volume')
        volume = self._volume(VolumeId, u'detach_volume')
        if not volume[u'Attachments']:
            raise client_error(u'IncorrectState', u'detach_volume')
        attachment = volume[u'Attachments'][0]
        attachment[u'State'] = u'detaching'
        response = deepcopy(attachment)

        def detached():
            volume[u'State'] = u'available'
            volume[u'Attachments'] = []
            self.instances[InstanceId] = [
                mapping for mapping in self.instances[InstanceId]
                if mapping[u'Ebs'][u'VolumeId'] != VolumeId
            ]
            self.devices.discard(Device)
        self._later(detached)
        if not self.delay:
            response[u'State'] = u'detached'
        return response

    def delete_volume(self, VolumeId):
        self._check_failure(u'delete_volume')
        volume = self._volume(VolumeId, u'delete_volume')
        if volume[u'Attachments']:
            raise client_error(u'VolumeInUse', u'delete_volume')
        volume[u'State'] = u'deleting'

        def deleted():
            del self.volumes[VolumeId]
            self.tags.pop(VolumeId, None)
        self._later(deleted)

    def create_tags(self, Resources, Tags):
        self._check_failure(u'create_tags')
        for resource in Resources:
            self._volume(resource, u'create_tags')
            for tag in Tags:
                self.tags.setdefault(resource, {})[tag[u'Key']] = tag[u'Value']

    def delete_tags(self, Resources, Tags):
        self._check_failure(u'delete_tags')
        for resource in Resources:
            tags = self.tags.get(resource, {})
            for tag in Tags:
                if tags.get(tag[u'Key']) == tag.get(u'Value'):
                    del tags[tag[u'Key']]

    def describe_tags(self, Filters, NextToken=None):
        self._check_failure(u'describe_tags')
        wanted = {f[u'Name']: f[u'Values'] for f in Filters}
        matches = []
        for volume_id in sorted(self.tags):
            for key, value in sorted(self.tags[volume_id].items()):
                if key not in wanted.get(u'key', [key]):
                    continue
                if value not in wanted.get(u'value', [value]):
                    continue
                matches.append({
                    u'ResourceId': volume_id, u'ResourceType': u'volume',
                    u'Key': key, u'Value': value,
                })
        start = int(NextToken or 0)
        response = {u'Tags': matches[start:start + self.page_size]}
        if start + self.page_size < len(matches):
            response[u'NextToken'] = str(start + self.page_size)
        return response

    def describe_instances(self, InstanceIds):
        self._check_failure(u'describe_instances')
        reservations = []
        for instance_id in InstanceIds:
            if instance_id not in self.instances:
                raise client_error(
                    u'InvalidInstanceID.NotFound', u'describe_instances')
            reservations.append({u'Instances': [{
                u'InstanceId': instance_id,
                u'BlockDeviceMappings': deepcopy(
                    self.instances[instance_id]),
            }]})
        return {u'Reservations': reservations}

    def named_volumes(self, name):
        """
        :return: The IDs of volumes tagged with ``name``, whatever the key.
        """
        return [
            volume_id for volume_id, tags in self.tags.items()
            if name in tags.values()
        ]


class FakeInstanceMetadata(object):
    """
    A fake ``InstanceMetadata``.

    :ivar bool available: If ``False`` every lookup fails.
    """
    def __init__(self, instance_id=FAKE_INSTANCE_ID,
                 availability_zone=FAKE_AVAILABILITY_ZONE):
        self._instance_id = instance_id
        self._availability_zone = availability_zone
        self.available = True

    def _value(self, path, value):
        if not self.available:
            raise MetadataUnavailable(path, u"connection refused")
        return value

    def instance_id(self):
        return self._value(u"instance-id", self._instance_id)

    def availability_zone(self):
        return self._value(
            u"placement/availability-zone", self._availability_zone)


@implementer(IMountManager)
class FakeMountManager(object):
    """
    An ``IMountManager`` whose block devices are those ``FakeEC2`` has
    attached.  Mount directories are real directories, so they must be
    beneath a temporary directory.

    :ivar dict mounted: ``{mountpoint: (device, filesystem_type)}``.
    :ivar dict formatted: ``{device: command}`` for each successful format.
    :ivar format_error: If not ``None``, the ``source_message`` of a
        ``MakeFilesystemError`` raised by every format.
    :ivar int unmount_failures: The number of upcoming unmounts to fail.
    """
    def __init__(self, ec2):
        self._ec2 = ec2
        self._directories = MountManager()
        self.mounted = {}
        self.formatted = {}
        self.format_error = None
        self.unmount_failures = 0

    def device_exists(self, blockdevice):
        return blockdevice in self._ec2.devices

    def device_numbers(self, blockdevice):
        if not self.device_exists(blockdevice):
            raise DeviceStatError(blockdevice, u"No such file or directory")
        return XVD_MAJOR, (ord(blockdevice[-1]) - ord(u"a")) * 16

    def make_filesystem(self, command, blockdevice, timeout):
        if self.format_error is not None:
            raise MakeFilesystemError(blockdevice, command, self.format_error)
        if not self.device_exists(blockdevice):
            raise MakeFilesystemError(
                blockdevice, command, u"No such file or directory")
        self.formatted[blockdevice] = command

    def make_mountpoint(self, mountpoint):
        self._directories.make_mountpoint(mountpoint)

    def remove_mountpoint(self, mountpoint):
        self._directories.remove_mountpoint(mountpoint)

    def mount(self, blockdevice, mountpoint, filesystem_type):
        if not self.device_exists(blockdevice):
            raise MountError(blockdevice, mountpoint, u"special device "
                             u"does not exist")
        self.mounted[mountpoint] = (blockdevice, filesystem_type)

    def unmount(self, mountpoint):
        if self.unmount_failures:
            self.unmount_failures -= 1
            raise UnmountError(mountpoint, u"target is busy")
        self.mounted.pop(mountpoint, None)
