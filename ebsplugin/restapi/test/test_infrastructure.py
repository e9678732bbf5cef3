# Copyright ClusterHQ Inc.  See LICENSE file for details.
"""
Tests for ``ebsplugin.restapi._infrastructure``.
"""

from klein import Klein

from eliot.testing import capture_logging, assertHasAction

from twisted.internet.defer import Deferred, fail
from twisted.web.http import BAD_REQUEST, INTERNAL_SERVER_ERROR, OK, CREATED
from twisted.trial.unittest import SynchronousTestCase

from .._infrastructure import EndpointResponse, structured
from .._error import make_bad_request
from .._logging import REQUEST, JSON_REQUEST
from ..testtools import APIAssertionsMixin
from ...testtools import CustomException


SCHEMAS = {
    "/types.json": {
        "$schema": "http://json-schema.org/draft-04/schema#",
        "definitions": {
            "Echo": {
                "type": "object",
                "properties": {"Err": {"type": "string"}},
                "required": ["Err"],
            },
        },
    },
}

ANY = {}
ECHO = {"$ref": "/types.json#/definitions/Echo"}


class EchoApplication(object):
    """
    A small API recording the keyword arguments endpoints are called with.

    :ivar calls: ``list`` of the keyword arguments of each endpoint call.
    :ivar pending: ``Deferred`` returned by the ``/later`` endpoint.
    """
    app = Klein()

    def __init__(self):
        self.calls = []
        self.pending = Deferred()

    @app.route("/echo", methods=["POST", "GET"])
    @structured(ANY, ANY)
    def echo(self, **kwargs):
        self.calls.append(kwargs)
        return {"Err": "", "Received": kwargs}

    @app.route("/ignore", methods=["POST"])
    @structured(ANY, ANY, ignore_body=True)
    def ignore(self, **kwargs):
        self.calls.append(kwargs)
        return {"Err": ""}

    @app.route("/validated", methods=["POST"])
    @structured(ANY, ECHO, schema_store=SCHEMAS)
    def validated(self, Err):
        return {"Err": Err}

    @app.route("/strict", methods=["POST"])
    @structured({"type": "object", "required": ["Name"]}, ANY)
    def strict(self, Name):
        return {"Err": ""}

    @app.route("/created", methods=["POST"])
    @structured(ANY, ANY)
    def created(self):
        return EndpointResponse(CREATED, {"Err": ""})

    @app.route("/refused", methods=["POST"])
    @structured(ANY, ANY)
    def refused(self):
        raise make_bad_request(code=OK, Err="Refused")

    @app.route("/broken", methods=["POST"])
    @structured(ANY, ANY)
    def broken(self):
        return fail(CustomException("broken"))

    @app.route("/later", methods=["POST"])
    @structured(ANY, ANY)
    def later(self):
        return self.pending


class StructuredTests(APIAssertionsMixin, SynchronousTestCase):
    """
    Tests for ``structured``.
    """
    def setUp(self):
        self.application = EchoApplication()
        self.use_resource(self.application.app.resource())

    def test_decodes_body(self):
        """
        The keys of the JSON object in the request body are passed to the
        endpoint as keyword arguments.
        """
        self.assertResult(
            b"POST", b"/echo", {"Name": "vol-1", "ID": "abc"}, OK,
            {"Err": "", "Received": {"Name": "vol-1", "ID": "abc"}})

    def test_empty_body(self):
        """
        An empty request body is treated as an empty object.
        """
        self.assertResult(
            b"POST", b"/echo", None, OK, {"Err": "", "Received": {}})

    def test_null_body(self):
        """
        A request body of ``null`` is treated as an empty object.
        """
        code, result = self.finish_request(
            self.start_request(b"POST", b"/echo", raw=b"null"))
        self.assertEqual((OK, {}), (code, result["Received"]))

    def test_get_ignores_body(self):
        """
        The body of a ``GET`` request is not decoded.
        """
        code, result = self.finish_request(
            self.start_request(b"GET", b"/echo", raw=b"not json"))
        self.assertEqual((OK, {}), (code, result["Received"]))

    def test_ignore_body(self):
        """
        With ``ignore_body`` even ``POST`` bodies are not decoded.
        """
        code, _ = self.finish_request(
            self.start_request(b"POST", b"/ignore", raw=b"12345 garbage"))
        self.assertEqual((OK, [{}]), (code, self.application.calls))

    def test_malformed_json(self):
        """
        A body which is not JSON results in a 400 response with an ``Err``
        explaining the problem and the endpoint is not called.
        """
        code, result = self.finish_request(
            self.start_request(b"POST", b"/echo", raw=b"{not json"))
        self.assertEqual(
            (BAD_REQUEST, True, []),
            (code, result["Err"].startswith("Invalid JSON: "),
             self.application.calls))

    def test_non_object_json(self):
        """
        A JSON body which isn't an object results in a 400 response.
        """
        self.assertResult(
            b"POST", b"/echo", [1, 2], BAD_REQUEST,
            {"Err": "Invalid JSON: expected an object"})

    def test_input_validation(self):
        """
        A body which doesn't match the input schema results in a 400
        response.
        """
        code, result = self.finish_request(
            self.start_request(b"POST", b"/strict", {}))
        self.assertEqual(
            (BAD_REQUEST, True),
            (code, result["Err"].startswith("Invalid request: ")))

    def test_output_validated(self):
        """
        A result which matches the output schema is returned.
        """
        self.assertResult(
            b"POST", b"/validated", {"Err": "x"}, OK, {"Err": "x"})

    @capture_logging(None)
    def test_output_validation_failure(self, logger):
        """
        A result which doesn't match the output schema is logged and results
        in a 500 response.
        """
        code, _ = self.finish_request(
            self.start_request(b"POST", b"/validated", {"Err": 1}))
        self.assertEqual(INTERNAL_SERVER_ERROR, code)
        logger.flush_tracebacks(Exception)

    def test_endpoint_response(self):
        """
        An ``EndpointResponse`` sets the response code.
        """
        self.assertResult(b"POST", b"/created", None, CREATED, {"Err": ""})

    def test_bad_request(self):
        """
        A ``BadRequest`` raised by the endpoint is rendered with its code and
        result.
        """
        self.assertResult(
            b"POST", b"/refused", None, OK, {"Err": "Refused"})

    @capture_logging(None)
    def test_unexpected_error(self, logger):
        """
        An unexpected exception results in a 500 response and a logged
        traceback.
        """
        code, _ = self.finish_request(
            self.start_request(b"POST", b"/broken", None))
        self.assertEqual(INTERNAL_SERVER_ERROR, code)
        self.assertEqual(1, len(logger.flush_tracebacks(CustomException)))

    def test_asynchronous_result(self):
        """
        An endpoint returning a ``Deferred`` is answered once it fires.
        """
        requesting = self.start_request(b"POST", b"/later", None)
        self.client.flush()
        self.assertNoResult(requesting)
        self.application.pending.callback({"Err": "done"})
        self.assertEqual(
            (OK, {"Err": "done"}), self.finish_request(requesting))

    @capture_logging(None)
    def test_logged(self, logger):
        """
        Each request is logged in a ``REQUEST`` action containing a
        ``JSON_REQUEST`` action.
        """
        self.assertResult(
            b"POST", b"/echo", {"Name": "a"}, OK,
            {"Err": "", "Received": {"Name": "a"}})
        assertHasAction(self, logger, REQUEST, True,
                        {"request_path": "/echo", "method": "POST"})
        assertHasAction(self, logger, JSON_REQUEST, True,
                        {"json": {"Name": "a"}}, {"code": OK})
