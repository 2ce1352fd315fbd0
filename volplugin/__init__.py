# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
volplugin exposes remote block-storage volumes to a host as locally mounted
filesystems.
"""

__version__ = "0.1.0"
