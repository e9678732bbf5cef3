# -*- test-case-name: ebsplugin.aws.test.test_metadata -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Discover the identity of the local EC2 instance.
"""

import treq

from pyrsistent import PClass, field

from twisted.internet.defer import inlineCallbacks, succeed
from twisted.web.http import OK

from eliot.twisted import DeferredContext

from ._logging import FETCH_METADATA

METADATA_BASE_URL = "http://169.254.169.254/latest/"
TOKEN_TTL_SECONDS = 3600

# NodeIdentity field -> instance metadata path.
_METADATA_PATHS = (
    ("region", "placement/region"),
    ("zone", "placement/availability-zone"),
    ("instance_id", "instance-id"),
)


class NodeIdentity(PClass):
    """
    Where the plugin is running.

    :ivar str region: The AWS region, e.g. ``us-east-1``.
    :ivar str zone: The availability zone, e.g. ``us-east-1a``.
    :ivar str instance_id: The EC2 instance identifier.
    """
    region = field(type=str, mandatory=True)
    zone = field(type=str, mandatory=True)
    instance_id = field(type=str, mandatory=True)


class MetadataUnavailable(Exception):
    """
    The instance metadata service did not answer a request successfully.
    """
    def __init__(self, path, code):
        Exception.__init__(self, path, code)
        self.path = path
        self.code = code

    def __str__(self):
        return "Instance metadata request for {} failed with {}".format(
            self.path, self.code)


def _checked_content(response, http, path):
    """
    :raise MetadataUnavailable: Unless the response is a success.
    :return: ``Deferred`` firing with the body of ``response``.
    """
    d = http.content(response)
    if response.code != OK:
        def failed(_):
            raise MetadataUnavailable(path, response.code)
        d.addCallback(failed)
    return d


def _request(http, method, url, path, headers):
    action = FETCH_METADATA(path=path)
    with action.context():
        d = DeferredContext(http.request(method, url, headers=headers))
        d.addCallback(_checked_content, http, path)
        d.addCallback(lambda content: content.decode("utf-8").strip())
        return d.addActionFinish()


def resolve_identity(overrides, http=treq, base_url=METADATA_BASE_URL):
    """
    Work out the local ``NodeIdentity``.

    Values supplied in ``overrides`` are used as they are.  Anything missing
    is fetched from the instance metadata service using a session token
    (IMDSv2).  When nothing is missing no request is made.

    :param dict overrides: Maps ``NodeIdentity`` field names to values or
        ``None``.
    :param http: A ``treq``-like object used to make requests.
    :param str base_url: The root of the instance metadata service.

    :raise MetadataUnavailable: If a metadata request fails.
    :return: ``Deferred`` firing with a ``NodeIdentity``.
    """
    values = {
        name: overrides.get(name) for (name, _) in _METADATA_PATHS
    }
    missing = [
        (name, path) for (name, path) in _METADATA_PATHS if not values[name]
    ]
    if not missing:
        return succeed(NodeIdentity(**values))

    @inlineCallbacks
    def fetch():
        token = yield _request(
            http, "PUT", base_url + "api/token", "api/token",
            {"X-aws-ec2-metadata-token-ttl-seconds": [
                str(TOKEN_TTL_SECONDS)]},
        )
        for name, path in missing:
            values[name] = yield _request(
                http, "GET", base_url + "meta-data/" + path, path,
                {"X-aws-ec2-metadata-token": [token]},
            )
        return NodeIdentity(**values)
    return fetch()
