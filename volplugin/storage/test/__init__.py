# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``volplugin.storage``.
"""
