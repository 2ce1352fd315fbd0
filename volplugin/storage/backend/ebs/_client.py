# -*- test-case-name: volplugin.storage.backend.ebs.test.test_client -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Construction of EC2 API clients and logging of the calls made with them.
"""

from functools import wraps
import logging

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from eliot import log_message, register_exception_extractor
from pyrsistent import PClass, field

from ._logging import AWS_ACTION, BOTO_LOG_HEADER

BOTO_NUM_RETRIES = 20

# Register Eliot field extractor for ClientError responses.
register_exception_extractor(
    ClientError,
    lambda e: {
        "aws_code": e.response['Error']['Code'],
        "aws_message": str(e.response['Error'].get('Message', u'')),
        "aws_request_id": e.response.get(
            'ResponseMetadata', {}).get('RequestId', u''),
    }
)


class EliotLogHandler(logging.Handler):
    def emit(self, record):
        log_message(
            message_type=BOTO_LOG_HEADER, message=record.getMessage()
        )


def _enable_boto_logging():
    """
    Make boto log activity using Eliot.
    """
    logger = logging.getLogger("boto3")
    logger.setLevel(logging.INFO)
    logger.addHandler(EliotLogHandler())

_enable_boto_logging()


def error_code(error):
    """
    :param ClientError error: An error raised by a boto3 client.
    :return: The AWS error code, e.g. ``InvalidVolume.NotFound``.
    """
    return error.response['Error']['Code']


def boto3_log(method):
    """
    Decorator to run an EC2 client call and log additional information about
    any exceptions that are raised.

    :param func method: The function to call.  Its first argument is the
        client and is left out of the log.

    :return: A function which will call the method and do
        the extra exception logging.
    """
    @wraps(method)
    def _run_with_logging(*args, **kwargs):
        """
        Run the given call with exception logging for ``ClientError``.
        """
        with AWS_ACTION(operation=[method.__name__,
                                   [str(arg) for arg in args[1:]],
                                   {k: str(v) for k, v in kwargs.items()}]):
            return method(*args, **kwargs)
    return _run_with_logging


class EC2Configuration(PClass):
    """
    Everything needed to build an EC2 client, other than the region which is
    supplied per operation.

    :ivar access_key_id: "aws_access_key_id" credential for EC2, or ``None``
        to use boto3's default credential chain.
    :ivar secret_access_key: "aws_secret_access_key" EC2 credential.
    :ivar session_token: Optional session token for temporary credentials.
    :ivar int max_attempts: Number of attempts botocore makes for each call,
        including retries of throttled requests.
    """
    access_key_id = field(type=(str, type(None)), initial=None)
    secret_access_key = field(type=(str, type(None)), initial=None)
    session_token = field(type=(str, type(None)), initial=None)
    max_attempts = field(type=int, initial=BOTO_NUM_RETRIES,
                         invariant=lambda v: (v > 0, "max_attempts <= 0"))

    def client(self, region):
        """
        Establish connection to EC2 client.

        :param str region: The name of the EC2 region to connect to.

        :return: A boto3 EC2 client.
        """
        session = boto3.session.Session(
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            aws_session_token=self.session_token,
        )
        # Exponential backoff and retry for ``RequestLimitExceeded``
        # errors is handled by botocore.
        return session.client(
            "ec2", region_name=region,
            config=Config(retries={'max_attempts': self.max_attempts}),
        )
