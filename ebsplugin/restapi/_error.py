# Copyright ClusterHQ Inc.  See LICENSE file for details.
"""
Errors an endpoint can raise to answer a request with a particular response
instead of an internal server error.
"""

from eliot import register_exception_extractor

from twisted.web.http import BAD_REQUEST

__all__ = [
    "BadRequest", "make_bad_request", "malformed_body", "schema_mismatch",
    ]


class BadRequest(Exception):
    """
    The request can't be served, and the client should be told so.

    Raising this never logs an incident; it is the expected outcome of bad
    input.

    :ivar int code: The HTTP response code.
    :ivar result: The response body, before JSON encoding.
    """
    def __init__(self, code, result):
        Exception.__init__(self, code, result)
        self.code = code
        self.result = result


register_exception_extractor(BadRequest, lambda e: {"code": e.code})


def make_bad_request(code=BAD_REQUEST, **result):
    """
    :return: A ``BadRequest`` whose body is an object with the given keys.
    """
    return BadRequest(code, result)


def malformed_body(reason):
    """
    :param reason: Why the body couldn't be used; the exception raised
        while decoding, or a description.

    :return: A ``BadRequest`` for a body which isn't a JSON object.
    """
    return make_bad_request(Err="Invalid JSON: {}".format(reason))


def schema_mismatch(errors):
    """
    :param list errors: Validation messages for the request body.

    :return: A ``BadRequest`` listing everything wrong with the body.
    """
    return make_bad_request(Err="Invalid request: " + "; ".join(errors))
