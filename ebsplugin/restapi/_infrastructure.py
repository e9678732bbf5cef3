# -*- test-case-name: ebsplugin.restapi.test.test_infrastructure -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.
"""
Exposing methods as JSON-over-HTTP endpoints of a Klein application.
"""

from functools import wraps

from json import loads, dumps

from twisted.internet.defer import maybeDeferred
from twisted.web.http import OK, INTERNAL_SERVER_ERROR

from eliot import write_failure
from eliot.twisted import DeferredContext

from ._error import BadRequest, malformed_body, schema_mismatch
from ._logging import REQUEST, JSON_REQUEST
from ._schema import getValidator

__all__ = [
    "EndpointResponse", "structured",
    ]

# Request bodies of these methods are never read.
_BODILESS_METHODS = frozenset([b"GET", b"HEAD"])


class EndpointResponse(object):
    """
    A successful result with a response code other than 200.

    :ivar int code: The HTTP response code.
    :ivar result: The response body, before JSON encoding.
    """
    def __init__(self, code, result):
        self.code = code
        self.result = result


def _unwrap(result):
    """
    :return: Tuple of the response code and body an endpoint's result
        stands for.
    """
    if isinstance(result, EndpointResponse):
        return result.code, result.result
    return OK, result


def _parse_object(body):
    """
    :param bytes body: A request body.

    :raise BadRequest: If ``body`` holds something other than a JSON object.
    :return: The decoded ``dict``; empty for an empty body or ``null``.
    """
    if not body.strip():
        return {}
    try:
        parsed = loads(body)
    except ValueError as e:
        raise malformed_body(e)
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise malformed_body("expected an object")
    return parsed


class _Endpoint(object):
    """
    The request handling shared by every ``structured`` endpoint.

    A request passes through three steps.  Its body is decoded and checked
    against the input schema, the endpoint is called in a ``JSON_REQUEST``
    action, then its result is checked against the output schema and
    encoded.  All of it happens in a ``REQUEST`` action.
    """
    def __init__(self, original, input_validator, output_validator,
                 ignore_body):
        self.original = original
        self.input_validator = input_validator
        self.output_validator = output_validator
        self.ignore_body = ignore_body

    def arguments(self, request):
        """
        :raise BadRequest: If the body is unusable.
        :return: The keyword arguments found in the body of ``request``.
        """
        if self.ignore_body or request.method in _BODILESS_METHODS:
            return {}
        arguments = _parse_object(request.content.read())
        errors = [
            error.message
            for error in self.input_validator.iter_errors(arguments)]
        if errors:
            raise schema_mismatch(errors)
        return arguments

    def call(self, arguments, instance, route_arguments):
        """
        Call the endpoint with the body's and the route's arguments.

        :return: ``Deferred`` firing with the endpoint's result.
        """
        action = JSON_REQUEST(json=dict(arguments))
        with action.context():
            arguments.update(route_arguments)
            d = DeferredContext(
                maybeDeferred(self.original, instance, **arguments))

            def log_result(result):
                code, json = _unwrap(result)
                action.add_success_fields(code=code, json=json)
                return result
            d.addCallback(log_result)
            return d.addActionFinish()

    def encode(self, request, result):
        """
        Validate ``result`` and write it to ``request``.

        :return: The response body.
        """
        code, json = _unwrap(result)
        self.output_validator.validate(json)
        return _write(request, code, json)

    def handle(self, instance, request, route_arguments):
        action = REQUEST(request_path=request.path, method=request.method)
        # Refers to a position in the logs no message will occupy, so it
        # identifies this request's failure uniquely.
        incident = action.serialize_task_id().decode("ascii")

        with action.context():
            d = DeferredContext(maybeDeferred(self.arguments, request))
            d.addCallback(self.call, instance, route_arguments)
            d.addCallback(lambda result: self.encode(request, result))

            def failed(reason):
                if reason.check(BadRequest):
                    return _write(
                        request, reason.value.code, reason.value.result)
                write_failure(reason)
                return _write(request, INTERNAL_SERVER_ERROR, incident)
            d.addErrback(failed)
            return d.addActionFinish()


def _write(request, code, json):
    """
    Set the response code and content type of ``request``.

    :return: ``json`` encoded as the response body.
    """
    request.setResponseCode(code)
    request.responseHeaders.setRawHeaders(
        b"content-type", [b"application/json"])
    return dumps(json).encode("utf-8")


def structured(inputSchema, outputSchema, schema_store=None,
               ignore_body=False):
    """
    Decorate a Klein endpoint method so it takes the keys of the JSON
    object in the request body as keyword arguments and returns a JSON
    encodable result.

    A body of ``{"Name": "vol-1"}`` results in a call like
    ``original(self, Name="vol-1")``, with any arguments from the route
    added.  Routing arguments and body keys must not collide.

    Bodies not matching ``inputSchema`` get a 400 response.  Results not
    matching ``outputSchema`` are logged as a failure and get a 500
    response, as does any exception other than ``BadRequest``.

    :param dict inputSchema: JSON Schema of the request body.
    :param dict outputSchema: JSON Schema of the response body.
    :param dict schema_store: Schemas, by path (e.g. ``/types.json``), the
        other two may refer to.
    :param bool ignore_body: Don't read the body whatever the method.  The
        bodies of ``GET`` and ``HEAD`` requests are never read.
    """
    if schema_store is None:
        schema_store = {}
    input_validator = getValidator(inputSchema, schema_store)
    output_validator = getValidator(outputSchema, schema_store)

    def decorator(original):
        endpoint = _Endpoint(
            original, input_validator, output_validator, ignore_body)

        @wraps(original)
        def dispatch(self, request, **route_arguments):
            return endpoint.handle(self, request, route_arguments)

        dispatch.inputSchema = inputSchema
        dispatch.outputSchema = outputSchema
        return dispatch
    return decorator
