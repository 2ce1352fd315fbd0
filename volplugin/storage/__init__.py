# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Storage drivers: the generic driver abstraction, the local OS surface and the
backends implementing them.
"""

__all__ = [
    'Volume', 'FSOptions', 'DriverOptions', 'ListOptions', 'Mount',
    'ICRUDDriver', 'IMountDriver', 'InvalidDriverOptions',
]

from .driver import (
    Volume, FSOptions, DriverOptions, ListOptions, Mount,
    ICRUDDriver, IMountDriver, InvalidDriverOptions,
)
