# -*- test-case-name: volplugin.storage.backend.test.test_backends -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Storage backend descriptions.
"""

from pyrsistent import PClass, field

from .ebs import BACKEND_NAME as EBS, crud_driver, mount_driver


class UnknownBackend(Exception):
    """
    No backend is registered under the requested name.

    :ivar unicode name: The requested name.
    """
    def __init__(self, name):
        Exception.__init__(self, name)
        self.name = name


class BackendDescription(PClass):
    """
    Represent one kind of storage backend we might be able to use.

    :ivar name: The fixed name of this storage backend, as returned by the
        ``name()`` of its drivers.
    :ivar crud_factory: Called with keyword configuration to return an
        ``ICRUDDriver`` provider.
    :ivar mount_factory: Called with a mount directory and keyword
        configuration to return an ``IMountDriver`` provider.
    """
    name = field(type=str, mandatory=True)
    crud_factory = field(mandatory=True)
    mount_factory = field(mandatory=True)


BACKENDS = {
    EBS: BackendDescription(
        name=EBS, crud_factory=crud_driver, mount_factory=mount_driver,
    ),
}


def backend_by_name(name):
    """
    :param unicode name: A backend name such as ``ebs``.
    :raise UnknownBackend: If there is no such backend.
    :return: The ``BackendDescription``.
    """
    try:
        return BACKENDS[name]
    except KeyError:
        raise UnknownBackend(name)
