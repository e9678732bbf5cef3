# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Helpers for validating API output against JSON Schema.
"""

from jsonschema import Draft4Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT4

__all__ = [
    "getValidator",
]


def getValidator(schema, schema_store):
    """
    Get a L{jsonschema} validator for C{schema}.

    References may only point at schemas in C{schema_store}; nothing is
    fetched remotely.

    @param schema: The JSON Schema to validate against.
    @type schema: L{dict}

    @param dict schema_store: A mapping between schema paths
        (e.g. ``/types.json``) and the JSON schema structure.
    """
    registry = Registry().with_resources(
        (path, Resource.from_contents(
            contents, default_specification=DRAFT4))
        for path, contents in schema_store.items()
    )
    return Draft4Validator(
        schema, registry=registry,
        format_checker=Draft4Validator.FORMAT_CHECKER)
