# -*- test-case-name: volplugin.storage.backend.ebs.test.test_volumes -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
EBS API calls used by the driver, and their synchronous counterparts which
wait for the asynchronous remote state change each call starts.

Volumes are found by a tag recording their hierarchical name, since EBS has
no naming of its own.  Nothing here is cached: every check re-queries EC2.
"""

from itertools import repeat

from botocore.exceptions import ClientError

from constantly import Values, ValueConstant
from pyrsistent import PClass, field

from ....common import backoff, wait_for_state
from ._client import boto3_log, error_code
from ._logging import (
    CREATED_VOLUME, TAGGED_VOLUME, UNTAGGED_VOLUME,
    WAITING_FOR_DEVICE, WAITING_FOR_VOLUME_STATUS_CHANGE,
)

VOLUME_NAME_LABEL = u"contiv.io.volplugin.volume.name"

# http://docs.aws.amazon.com/AWSEC2/latest/APIReference/errors-overview.html
# for error details:
NOT_FOUND = u'InvalidVolume.NotFound'

# Volume creation polls at 0.5s, 1s, 1.5s, ...
CREATE_POLL_STEP = 0.5
ATTACH_POLL_INTERVAL = 0.1
DETACH_POLL_INTERVAL = 0.1
DELETE_POLL_INTERVAL = 0.5


class EBSVolumeTypes(Values):
    """
    Constants for the different types of volumes that can be created on EBS.
    These are taken from the documentation at:
    http://docs.aws.amazon.com/AWSEC2/latest/UserGuide/EBSVolumeTypes.html
    """
    STANDARD = ValueConstant(u"standard")
    IO1 = ValueConstant(u"io1")
    IO2 = ValueConstant(u"io2")
    GP2 = ValueConstant(u"gp2")
    GP3 = ValueConstant(u"gp3")
    ST1 = ValueConstant(u"st1")
    SC1 = ValueConstant(u"sc1")


class VolumeStates(Values):
    """
    Lifecycle states of an EBS volume.
    """
    CREATING = ValueConstant(u'creating')
    AVAILABLE = ValueConstant(u'available')
    IN_USE = ValueConstant(u'in-use')
    DELETING = ValueConstant(u'deleting')
    DELETED = ValueConstant(u'deleted')
    ERROR = ValueConstant(u'error')


class AttachmentStates(Values):
    """
    States of the attachment of an EBS volume to an instance.
    """
    ATTACHING = ValueConstant(u'attaching')
    ATTACHED = ValueConstant(u'attached')
    DETACHING = ValueConstant(u'detaching')
    DETACHED = ValueConstant(u'detached')


class UnknownVolume(Exception):
    """
    No volume carries the requested name tag.

    :ivar unicode name: The hierarchical volume name.
    """
    def __init__(self, name):
        Exception.__init__(self, name)
        self.name = name

    def __str__(self):
        return "no EBS volume is tagged with name {!r}".format(self.name)


class AmbiguousVolumeName(Exception):
    """
    More than one volume carries the requested name tag.  None of them is
    picked, since that risks operating on the wrong disk.

    :ivar unicode name: The hierarchical volume name.
    :ivar list volume_ids: The IDs of every volume with that name.
    """
    def __init__(self, name, volume_ids):
        Exception.__init__(self, name, volume_ids)
        self.name = name
        self.volume_ids = volume_ids

    def __str__(self):
        return "expected one EBS volume tagged with name {!r}, got {}".format(
            self.name, ", ".join(self.volume_ids))


class UnknownInstanceID(Exception):
    """
    EC2 did not describe exactly one instance with the given ID.

    :ivar unicode instance_id: The instance ID.
    """
    def __init__(self, instance_id):
        Exception.__init__(self, instance_id)
        self.instance_id = instance_id


class UnexpectedResponse(Exception):
    """
    EC2 returned a description which does not match the request.

    :ivar unicode resource_id: The ID that was described.
    :ivar int count: How many resources came back.
    """
    def __init__(self, resource_id, count):
        Exception.__init__(self, resource_id, count)
        self.resource_id = resource_id
        self.count = count


class UnexpectedVolumeState(Exception):
    """
    A volume entered a state from which the awaited state is unreachable.

    :ivar unicode volume_id: The EBS volume ID.
    :ivar unicode state: The state observed.
    :ivar unicode target_state: The state that was awaited.
    """
    def __init__(self, volume_id, state, target_state):
        Exception.__init__(self, volume_id, state, target_state)
        self.volume_id = volume_id
        self.state = state
        self.target_state = target_state


class VolumeConfig(PClass):
    """
    Parameters of a ``create_volume`` call.

    :ivar unicode availability_zone: Where to create the volume.
    :ivar int size: Size in GiB.
    :ivar iops: Provisioned IOs per second, or ``None``.
    :ivar unicode volume_type: One of ``EBSVolumeTypes``' values.
    """
    availability_zone = field(type=str, mandatory=True)
    size = field(type=int, mandatory=True,
                 invariant=lambda v: (v >= 1, "size must be at least 1 GiB"))
    iops = field(type=(int, type(None)), initial=None)
    volume_type = field(type=str, initial=EBSVolumeTypes.GP2.value)


def _name_filters(value=None):
    filters = [
        {u'Name': u'resource-type', u'Values': [u'volume']},
        {u'Name': u'key', u'Values': [VOLUME_NAME_LABEL]},
    ]
    if value is not None:
        filters.append({u'Name': u'value', u'Values': [value]})
    return filters


def _describe_tags(client, filters):
    """
    Describe every tag matching ``filters``, following pagination.
    """
    tags = []
    kwargs = {}
    while True:
        response = client.describe_tags(Filters=filters, **kwargs)
        tags.extend(response[u'Tags'])
        token = response.get(u'NextToken')
        if not token:
            return tags
        kwargs = {u'NextToken': token}


@boto3_log
def tag_volume_name(client, volume_id, name):
    """
    Record ``name`` in the name tag of ``volume_id``.
    """
    client.create_tags(
        Resources=[volume_id],
        Tags=[{u'Key': VOLUME_NAME_LABEL, u'Value': name}],
    )
    TAGGED_VOLUME.log(volume_id=volume_id, key=VOLUME_NAME_LABEL,
                      value=name)


@boto3_log
def untag_volume_name(client, volume_id, name):
    """
    Remove the name tag ``name`` from ``volume_id``.
    """
    client.delete_tags(
        Resources=[volume_id],
        Tags=[{u'Key': VOLUME_NAME_LABEL, u'Value': name}],
    )
    UNTAGGED_VOLUME.log(volume_id=volume_id, key=VOLUME_NAME_LABEL,
                        value=name)


@boto3_log
def resolve_volume_id(client, name):
    """
    Find the volume tagged with ``name``.

    :raise UnknownVolume: If no volume has that name.
    :raise AmbiguousVolumeName: If more than one does.
    :return: The ``unicode`` volume ID.
    """
    volume_ids = [
        tag[u'ResourceId']
        for tag in _describe_tags(client, _name_filters(name))
    ]
    if not volume_ids:
        raise UnknownVolume(name)
    if len(volume_ids) > 1:
        raise AmbiguousVolumeName(name, volume_ids)
    return volume_ids[0]


@boto3_log
def list_tagged_volumes(client):
    """
    :return: A ``list`` of ``(volume_id, name)`` for every named volume.
    """
    return [
        (tag[u'ResourceId'], tag[u'Value'])
        for tag in _describe_tags(client, _name_filters())
    ]


@boto3_log
def describe_instance(client, instance_id):
    """
    :raise UnknownInstanceID: If EC2 does not describe exactly one instance.
    :return: The instance description ``dict``.
    """
    response = client.describe_instances(InstanceIds=[instance_id])
    reservations = response[u'Reservations']
    if len(reservations) != 1:
        raise UnknownInstanceID(instance_id)
    instances = reservations[0][u'Instances']
    if len(instances) != 1:
        raise UnknownInstanceID(instance_id)
    return instances[0]


def describe_volume(client, volume_id):
    """
    :raise UnexpectedResponse: If EC2 does not describe exactly one volume.
    :return: The volume description ``dict``.
    """
    volumes = client.describe_volumes(VolumeIds=[volume_id])[u'Volumes']
    if len(volumes) != 1:
        raise UnexpectedResponse(volume_id, len(volumes))
    return volumes[0]


@boto3_log
def create_volume(client, config):
    """
    Start creating a volume.

    :param VolumeConfig config: What to create.
    :return: The ``create_volume`` response, whose ``State`` is typically
        ``creating``.
    """
    if client is None:
        raise ValueError("service can't be None")
    if config is None:
        raise ValueError("config can't be None")
    kwargs = dict(
        AvailabilityZone=config.availability_zone,
        Size=config.size,
        VolumeType=config.volume_type,
    )
    if config.iops is not None:
        kwargs[u'Iops'] = config.iops
    volume = client.create_volume(**kwargs)
    CREATED_VOLUME.log(volume_id=volume[u'VolumeId'], size=config.size)
    return volume


@boto3_log
def attach_volume(client, volume_id, instance_id, device):
    """
    Start attaching ``volume_id`` to ``instance_id`` at ``device``.

    :return: The attachment description.
    """
    return client.attach_volume(
        VolumeId=volume_id, InstanceId=instance_id, Device=device)


@boto3_log
def detach_volume(client, volume_id, instance_id, device, force):
    """
    Start detaching ``volume_id`` from ``instance_id``.

    :return: The attachment description.
    """
    return client.detach_volume(
        VolumeId=volume_id, InstanceId=instance_id, Device=device,
        Force=force)


@boto3_log
def delete_volume(client, volume_id):
    """
    Start deleting ``volume_id``.
    """
    client.delete_volume(VolumeId=volume_id)


def _volume_reached(volume, target_state):
    """
    Log the state of ``volume`` and check it against ``target_state``.

    :raise UnexpectedVolumeState: If the volume is in the ``error`` state.
    :return: ``True`` if ``volume`` is in ``target_state``.
    """
    state = volume[u'State']
    WAITING_FOR_VOLUME_STATUS_CHANGE.log(
        volume_id=volume[u'VolumeId'], status=state,
        target_status=target_state,
    )
    if state == VolumeStates.ERROR.value:
        raise UnexpectedVolumeState(volume[u'VolumeId'], state, target_state)
    return state == target_state


def create_volume_synchronously(client, config, timeout, clock=None):
    """
    Create a volume and wait for it to become ``available``.

    :param VolumeConfig config: What to create.
    :param float timeout: Seconds to wait.

    :raise TimedOut: If the volume is not available within ``timeout``.
    :return: The volume description.
    """
    volume = create_volume(client, config)
    volume_id = volume[u'VolumeId']
    target = VolumeStates.AVAILABLE.value

    def available():
        try:
            current = describe_volume(client, volume_id)
        except (ClientError, UnexpectedResponse):
            # Not yet visible to every EC2 endpoint.
            return None
        if _volume_reached(current, target):
            return current
        return None

    initial = volume if volume[u'State'] == target else None
    steps = backoff(step=CREATE_POLL_STEP, maximum_step=None, timeout=None,
                    jitter=None)
    return wait_for_state(available, steps, timeout,
                          initial=initial, clock=clock)


def attach_volume_synchronously(client, volume_id, instance_id, device,
                                device_exists, timeout, clock=None):
    """
    Attach a volume and wait for EC2 to report it ``attached`` and for the OS
    to expose ``device``.  EC2 can report ``attached`` slightly before the
    device node appears.

    :param device_exists: A one-argument callable reporting whether the OS
        currently exposes a device path.
    :param float timeout: Seconds to wait.

    :raise TimedOut: If the attachment does not complete within ``timeout``.
    :return: The attachment description.
    """
    attachment = attach_volume(client, volume_id, instance_id, device)
    target = AttachmentStates.ATTACHED.value

    def attached():
        present = device_exists(device)
        WAITING_FOR_DEVICE.log(volume_id=volume_id, device=device,
                               present=present)
        if not present:
            return None
        try:
            volume = describe_volume(client, volume_id)
        except (ClientError, UnexpectedResponse):
            return None
        attachments = volume.get(u'Attachments', [])
        state = attachments[0][u'State'] if len(attachments) == 1 else None
        WAITING_FOR_VOLUME_STATUS_CHANGE.log(
            volume_id=volume_id, status=state, target_status=target,
        )
        if state == target:
            return attachments[0]
        return None

    initial = None
    if attachment[u'State'] == target and device_exists(device):
        initial = attachment
    return wait_for_state(attached, repeat(ATTACH_POLL_INTERVAL), timeout,
                          initial=initial, clock=clock)


def detach_volume_synchronously(client, volume_id, instance_id, device, force,
                                device_exists, timeout, clock=None):
    """
    Detach a volume and wait for ``device`` to vanish from the OS and for EC2
    to report the volume ``available`` again.

    :param bool force: Whether to force the detachment.
    :param device_exists: A one-argument callable reporting whether the OS
        currently exposes a device path.
    :param float timeout: Seconds to wait.

    :raise TimedOut: If the detachment does not complete within ``timeout``.
    :return: The volume description.
    """
    attachment = detach_volume(client, volume_id, instance_id, device, force)
    target = VolumeStates.AVAILABLE.value

    def detached():
        present = device_exists(device)
        WAITING_FOR_DEVICE.log(volume_id=volume_id, device=device,
                               present=present)
        if present:
            return None
        try:
            volume = describe_volume(client, volume_id)
        except (ClientError, UnexpectedResponse):
            return None
        if _volume_reached(volume, target):
            return volume
        return None

    initial = None
    if (attachment[u'State'] == AttachmentStates.DETACHED.value and
            not device_exists(device)):
        try:
            initial = describe_volume(client, volume_id)
        except (ClientError, UnexpectedResponse):
            initial = None
    return wait_for_state(detached, repeat(DETACH_POLL_INTERVAL), timeout,
                          initial=initial, clock=clock)


def delete_volume_synchronously(client, volume_id, timeout, clock=None):
    """
    Delete a volume and wait for it to be gone.  EC2 forgetting the volume
    entirely counts as success.

    :param float timeout: Seconds to wait.

    :raise TimedOut: If the volume still exists after ``timeout``.
    """
    delete_volume(client, volume_id)

    def deleted():
        try:
            volume = describe_volume(client, volume_id)
        except ClientError as e:
            if error_code(e) == NOT_FOUND:
                return True
            return None
        except UnexpectedResponse:
            return None
        WAITING_FOR_VOLUME_STATUS_CHANGE.log(
            volume_id=volume_id, status=volume[u'State'],
            target_status=VolumeStates.DELETED.value,
        )
        return volume[u'State'] == VolumeStates.DELETED.value

    wait_for_state(deleted, repeat(DELETE_POLL_INTERVAL), timeout,
                   initial=deleted(), clock=clock)
