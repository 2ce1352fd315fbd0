# -*- test-case-name: volplugin.storage.backend.ebs.test.test_metadata -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Identity of the local compute instance, read from the EC2 instance metadata
service.
"""

import requests

from pyrsistent import PClass, field

METADATA_ENDPOINT = u"http://169.254.169.254/latest"
TOKEN_TTL_SECONDS = 60
METADATA_TIMEOUT = 2.0


class MetadataUnavailable(Exception):
    """
    The instance metadata endpoint could not be reached or returned nothing
    useful.

    :ivar unicode path: The metadata path which was requested.
    :ivar unicode reason: What went wrong.
    """
    def __init__(self, path, reason):
        Exception.__init__(self, path, reason)
        self.path = path
        self.reason = reason

    def __str__(self):
        return "failed to retrieve {} from instance metadata: {}".format(
            self.path, self.reason)


class InstanceMetadata(PClass):
    """
    Client for the IMDSv2 instance metadata service.

    :ivar unicode endpoint: Base URL of the service.
    :ivar float timeout: Seconds to wait for each HTTP request.
    :ivar session: A ``requests.Session``-like object used for requests.
    """
    endpoint = field(type=str, initial=METADATA_ENDPOINT)
    timeout = field(type=float, initial=METADATA_TIMEOUT)
    session = field(initial=requests.Session)

    def _token(self):
        response = self.session.put(
            self.endpoint + u"/api/token",
            headers={
                "X-aws-ec2-metadata-token-ttl-seconds":
                    str(TOKEN_TTL_SECONDS),
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.text

    def get(self, path):
        """
        Fetch one metadata item.

        :param unicode path: Path beneath ``meta-data/``.

        :raise MetadataUnavailable: If the item cannot be retrieved.
        :return: The ``unicode`` value.
        """
        try:
            response = self.session.get(
                self.endpoint + u"/meta-data/" + path,
                headers={"X-aws-ec2-metadata-token": self._token()},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise MetadataUnavailable(path, str(e))
        value = response.text.strip()
        if not value:
            raise MetadataUnavailable(path, u"empty response")
        return value

    def instance_id(self):
        """
        Look up the EC2 instance ID for this node.
        """
        return self.get(u"instance-id")

    def availability_zone(self):
        """
        Look up the availability zone this node runs in.
        """
        return self.get(u"placement/availability-zone")
