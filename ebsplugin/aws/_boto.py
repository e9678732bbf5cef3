# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Plumbing shared by everything which talks to AWS through boto3.
"""

import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from eliot import log_message, register_exception_extractor

from ._logging import AWS_ACTION, BOTO_LOG_HEADER

BOTO_NUM_RETRIES = 20

# Register Eliot field extractor for ClientError responses.
register_exception_extractor(
    ClientError,
    lambda e: {
        "aws_code": e.response['Error']['Code'],
        "aws_message": str(e.response['Error']['Message']),
        "aws_request_id": e.response['ResponseMetadata'].get('RequestId'),
    }
)


class ControlPlaneError(Exception):
    """
    Querying or changing state through an AWS API failed.

    :ivar str operation: The API operation that failed.
    :ivar str code: The AWS error code, if AWS supplied one.
    :ivar str reason: A description of the failure.
    """
    def __init__(self, operation, reason, code=None):
        Exception.__init__(self, operation, reason, code)
        self.operation = operation
        self.reason = reason
        self.code = code

    def __str__(self):
        return "{} failed: {}".format(self.operation, self.reason)


def _from_boto(operation, error):
    """
    Convert an exception raised by boto3 into a ``ControlPlaneError``.
    """
    if isinstance(error, ClientError):
        details = error.response['Error']
        return ControlPlaneError(
            operation,
            "{}: {}".format(details['Code'], details['Message']),
            code=details['Code'],
        )
    return ControlPlaneError(operation, str(error))


def call_aws(client, operation, **kwargs):
    """
    Call a boto3 client operation, logging it with Eliot.

    :param client: A boto3 client.
    :param str operation: The snake_case name of the client method.
    :param kwargs: The parameters of the operation.

    :raise ControlPlaneError: If boto3 reports a failure.
    :return: The response ``dict``.
    """
    with AWS_ACTION(operation=[operation, [], kwargs]):
        try:
            return getattr(client, operation)(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise _from_boto(operation, e)


def paginate_aws(client, operation, key, **kwargs):
    """
    Collect every item of a paginated boto3 list operation.

    :param client: A boto3 client.
    :param str operation: The snake_case name of the paginated operation.
    :param str key: The key of the list in each page of the response.
    :param kwargs: The parameters of the operation.

    :raise ControlPlaneError: If boto3 reports a failure.
    :return: A ``list`` of the items of every page.
    """
    with AWS_ACTION(operation=[operation, [], kwargs]):
        try:
            items = []
            for page in client.get_paginator(operation).paginate(**kwargs):
                items.extend(page.get(key, []))
            return items
        except (ClientError, BotoCoreError) as e:
            raise _from_boto(operation, e)


def batches(items, size):
    """
    Split ``items`` into lists of at most ``size`` elements.
    """
    items = list(items)
    return [items[i:i + size] for i in range(0, len(items), size)]


def aws_session(region):
    """
    Create a boto3 session for ``region``, using the default credential
    chain.

    :param str region: The name of the AWS region.

    :return: ``boto3.session.Session``.
    """
    session = boto3.session.Session(region_name=region)
    # Retry attempts made when retrieving instance role credentials from the
    # metadata service.  Exponential backoff and retry for
    # ``RequestLimitExceeded`` errors is already done by botocore.
    session._session.set_config_variable(
        'metadata_service_num_attempts', BOTO_NUM_RETRIES)
    return session


class EliotLogHandler(logging.Handler):
    """
    Forward standard library log records into Eliot.
    """
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
