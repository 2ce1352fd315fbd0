# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Eliot action and message types for the EBS storage driver.
"""

from eliot import Field, ActionType, MessageType

# An OPERATION is a list of:
# method name, positional arguments, keyword arguments.
OPERATION = Field.for_types(
    u"operation", [list],
    u"The AWS operation being executed, "
    u"along with positional and keyword arguments.")

AWS_ACTION = ActionType(
    u"volplugin:storage:ebs:aws",
    [OPERATION],
    [],
    u"An AWS API call is executing on behalf of the EBS driver.")

DRIVER_OPERATION = Field.for_types(
    u"driver_operation", [str],
    u"The name of the public driver operation.")
VOLUME_NAME = Field.for_types(
    u"volume_name", [str],
    u"The hierarchical tenant/volume name of the volume.")

DRIVER_ACTION = ActionType(
    u"volplugin:storage:ebs:operation",
    [DRIVER_OPERATION, VOLUME_NAME],
    [],
    u"A public EBS driver operation is executing.")

BOTO_LOG_HEADER = u'volplugin:storage:ebs:boto_logs'

DEVICES = Field.for_types(
    u"devices", [list],
    u"List of devices currently in use by the compute instance.")
NO_AVAILABLE_DEVICE = MessageType(
    u"volplugin:storage:ebs:no_available_device",
    [DEVICES],
    u"Every candidate device path is in use.",
)
IN_USE_DEVICES = MessageType(
    u"volplugin:storage:ebs:in_use_devices",
    [DEVICES],
    u"Log current devices.",
)

VOLUME_ID = Field.for_types(
    u"volume_id", [str],
    u"The identifier of volume of interest.")
STATUS = Field.for_types(
    u"status", [str, type(None)],
    u"Current status of the volume or attachment.")
TARGET_STATUS = Field.for_types(
    u"target_status", [str],
    u"Expected target status of the volume, as a result of an AWS API call.")
WAITING_FOR_VOLUME_STATUS_CHANGE = MessageType(
    u"volplugin:storage:ebs:volume_status_change_wait",
    [VOLUME_ID, STATUS, TARGET_STATUS],
    u"Waiting for a volume to reach target status.",)

DEVICE = Field.for_types(
    u"device", [str],
    u"The device path a volume is attached at.")
WAITING_FOR_DEVICE = MessageType(
    u"volplugin:storage:ebs:device_wait",
    [VOLUME_ID, DEVICE, Field.for_types(
        u"present", [bool],
        u"Whether the device node currently exists.")],
    u"Waiting for a device node to appear in or vanish from the OS.",)

MOUNTPOINT = Field.for_types(
    u"mountpoint", [str],
    u"The directory a volume is mounted on.")
ATTEMPT = Field.for_types(
    u"attempt", [int],
    u"Which attempt, counting from 1, failed.")
REASON = Field.for_types(
    u"reason", [str],
    u"Description of the error.")
UNMOUNT_RETRY = MessageType(
    u"volplugin:storage:ebs:unmount_retry",
    [MOUNTPOINT, ATTEMPT, REASON],
    u"Tearing down a mount failed and will be retried.",)

STEP = Field.for_types(
    u"step", [str],
    u"The compensating step which was attempted.")
COMPENSATION_FAILED = MessageType(
    u"volplugin:storage:ebs:compensation_failed",
    [VOLUME_NAME, STEP, REASON],
    u"A compensating action failed; the original error is still reported.",)

SIZE = Field.for_types(
    u"size", [int],
    u"Size of the volume, in GiB.")
CREATED_VOLUME = MessageType(
    u"volplugin:storage:ebs:created_volume",
    [VOLUME_ID, SIZE],
    u"A volume was created.",)

TAG_KEY = Field.for_types(u"key", [str], u"The tag key.")
TAG_VALUE = Field.for_types(u"value", [str], u"The tag value.")
TAGGED_VOLUME = MessageType(
    u"volplugin:storage:ebs:tagged_volume",
    [VOLUME_ID, TAG_KEY, TAG_VALUE],
    u"A name tag was added to a volume.",)
UNTAGGED_VOLUME = MessageType(
    u"volplugin:storage:ebs:untagged_volume",
    [VOLUME_ID, TAG_KEY, TAG_VALUE],
    u"A name tag was removed from a volume.",)
