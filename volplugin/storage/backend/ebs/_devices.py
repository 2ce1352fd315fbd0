# -*- test-case-name: volplugin.storage.backend.ebs.test.test_devices -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Choice of the device path at which a volume is attached to this instance.
"""

from string import ascii_lowercase

from ._logging import IN_USE_DEVICES, NO_AVAILABLE_DEVICE

DEVICE_PREFIX = u"/dev/xvd"

# ``/dev/xvda`` through ``/dev/xvdy``.
DEVICE_SUFFIXES = ascii_lowercase[:25]


class NoAvailableDevice(Exception):
    """
    Every candidate device path is already in use on this instance.

    :ivar list devices: The device paths in use.
    """
    def __init__(self, devices):
        Exception.__init__(self, u"failed to find free block device", devices)
        self.devices = devices


class UnattachedVolume(Exception):
    """
    A volume is not attached to this instance.

    :ivar unicode volume_id: The EBS volume ID.
    """
    def __init__(self, volume_id):
        Exception.__init__(
            self, u"failed to find volume in attached volumes", volume_id)
        self.volume_id = volume_id


def find_free_device(mappings):
    """
    Pick the first device path not named by ``mappings``.

    :param list mappings: ``BlockDeviceMappings`` of the instance, as
        returned by ``describe_instances``.

    :raise NoAvailableDevice: If all of ``/dev/xvd[a-y]`` are taken.
    :return: The ``unicode`` device path.
    """
    devices = sorted(mapping[u'DeviceName'] for mapping in mappings)
    IN_USE_DEVICES.log(devices=devices)
    for suffix in DEVICE_SUFFIXES:
        device = DEVICE_PREFIX + suffix
        if device not in devices:
            return device

    NO_AVAILABLE_DEVICE.log(devices=devices)
    raise NoAvailableDevice(devices)


def find_device_for_volume(mappings, volume_id):
    """
    Find the device path ``volume_id`` is attached at.

    :param list mappings: ``BlockDeviceMappings`` of the instance.
    :param unicode volume_id: The EBS volume ID.

    :raise UnattachedVolume: If ``volume_id`` is not among ``mappings``.
    :return: The ``unicode`` device path.
    """
    for mapping in mappings:
        if mapping.get(u'Ebs', {}).get(u'VolumeId') == volume_id:
            return mapping[u'DeviceName']
    raise UnattachedVolume(volume_id)
