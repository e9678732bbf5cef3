# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tools for testing code built on L{ebsplugin.restapi}.
"""

from json import dumps, loads

from jsonschema.exceptions import ValidationError

from treq.testing import StubTreq

from twisted.trial.unittest import SynchronousTestCase

from ._schema import getValidator

__all__ = ["APIAssertionsMixin", "build_schema_test"]


class APIAssertionsMixin(object):
    """
    Mixin for test cases which issue requests against an in-memory Klein
    application.

    :ivar StubTreq client: The client used to issue requests.  Set by
        ``use_resource``.
    """
    client = None

    def use_resource(self, resource):
        """
        Direct subsequent requests at ``resource``.

        :param IResource resource: The resource to serve requests from.
        """
        self.client = StubTreq(resource)

    def start_request(self, method, path, request_body=None, raw=None):
        """
        Issue a request without waiting for its response.

        :param bytes method: HTTP method.
        :param bytes path: Absolute path of the request.
        :param request_body: Object to encode as the JSON body, or ``None``
            for an empty body.
        :param bytes raw: A body to send as-is instead of ``request_body``.

        :return: ``Deferred`` firing with the response.
        """
        if raw is not None:
            data = raw
        elif request_body is None:
            data = b""
        else:
            data = dumps(request_body).encode("utf-8")
        return self.client.request(
            method.decode("ascii"), "http://127.0.0.1" + path.decode("ascii"),
            data=data,
            headers={b"content-type": [b"application/json"]},
        )

    def finish_request(self, requesting):
        """
        Deliver any outstanding data and decode the response of a request
        started with ``start_request``.

        :return: Tuple of response code and decoded JSON body.
        """
        self.client.flush()
        response = self.successResultOf(requesting)
        reading = self.client.content(response)
        self.client.flush()
        return response.code, loads(self.successResultOf(reading))

    def assertResult(self, method, path, request_body,
                     expected_code, expected_result):
        """
        Assert a particular JSON response for the given API request.

        :param bytes method: HTTP method to request.
        :param bytes path: HTTP path.
        :param request_body: Object to encode as the JSON body, or ``None``.
        :param int expected_code: Expected HTTP response code.
        :param expected_result: Expected decoded body.
        """
        self.assertEqual(
            (expected_code, expected_result),
            self.finish_request(
                self.start_request(method, path, request_body)),
        )


def build_schema_test(name, schema, schema_store,
                      failing_instances, passing_instances):
    """
    Make a test case checking that a JSON Schema accepts and rejects the
    given instances, one test method per instance.

    :param str name: The name of the test case class.
    :param dict schema: The schema, usually a ``$ref`` into
        ``schema_store``.
    :param dict schema_store: Schemas by path.
    :param list failing_instances: Instances the schema must reject.
    :param list passing_instances: Instances the schema must accept.

    :return: A ``SynchronousTestCase`` subclass.
    """
    validator = getValidator(schema, schema_store)

    def rejects(instance):
        def test(self):
            self.assertRaises(ValidationError, validator.validate, instance)
        return test

    def accepts(instance):
        def test(self):
            validator.validate(instance)
        return test

    methods = {}
    for prefix, make_test, instances in [
            ("test_rejects", rejects, failing_instances),
            ("test_accepts", accepts, passing_instances)]:
        for index, instance in enumerate(instances):
            test = make_test(instance)
            test.__name__ = "{}_{}".format(prefix, index)
            test.__doc__ = "The schema {} ``{!r}``.".format(
                prefix.split("_")[1], instance)
            methods[test.__name__] = test
    return type(name, (SynchronousTestCase,), methods)
