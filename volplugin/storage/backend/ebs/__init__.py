# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Storage driver backed by Amazon EBS volumes.
"""

__all__ = [
    'BACKEND_NAME', 'EBSDriver', 'crud_driver', 'mount_driver',
    'EC2Configuration', 'InstanceMetadata',
    'InvalidVolumeSize', 'InvalidVolumeName', 'MissingRegion',
    'InvalidVolumeParameter', 'StepFailed', 'UnmountFailed',
    'UnknownVolume', 'AmbiguousVolumeName', 'UnknownInstanceID',
    'UnexpectedVolumeState', 'MetadataUnavailable', 'NoAvailableDevice',
    'UnattachedVolume', 'VOLUME_NAME_LABEL',
]

from ._client import EC2Configuration
from ._devices import NoAvailableDevice, UnattachedVolume
from ._metadata import InstanceMetadata, MetadataUnavailable
from ._volumes import (
    VOLUME_NAME_LABEL, AmbiguousVolumeName, UnexpectedVolumeState,
    UnknownInstanceID, UnknownVolume,
)
from .driver import (
    BACKEND_NAME, EBSDriver, InvalidVolumeName, InvalidVolumeParameter,
    InvalidVolumeSize, MissingRegion, StepFailed, UnmountFailed, crud_driver,
    mount_driver,
)
