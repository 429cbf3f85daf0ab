"""Equality rules for connection options and connection urls.

Two storages share a cached connection when their options are equal by value.
Driver options are not canonical: the same hosts can come in any order and
nested option objects can be rebuilt between calls, so plain ``==`` would
open duplicate connections.
"""

from collections.abc import Callable, Mapping
from typing import Any, Literal

from pymongo.errors import ConfigurationError, InvalidURI
from pymongo.uri_parser import parse_uri

Comparator = Callable[[Any, Any], bool]
UriComparator = Callable[[str, str], bool]

_BYTES = (bytes, bytearray, memoryview)
_SEQUENCES = (list, tuple)
_URI_FIELDS = ("username", "password", "database")


def compare(object1: Any, object2: Any) -> bool:
    """Compare two option values by value.

    Empty and falsy values are all equivalent, mappings are compared key by
    key no matter the insertion order.
    """
    if object1 is object2:
        return True

    if not object1 or not object2:
        if not object1 and not object2:
            return True
        return not has_keys(object1 if object1 else object2)

    if not (isinstance(object1, Mapping) and isinstance(object2, Mapping)):
        return _compare_values(object1, object2)

    keys1 = 0
    for key, value1 in object1.items():
        if key not in object2:
            return False
        if not _compare_values(value1, object2[key]):
            return False
        keys1 += 1

    return keys1 == len(object2)


def compare_arrays(array1: Any, array2: Any) -> bool:
    """Compare sequences, bytes by content and every other item by identity."""
    if len(array1) != len(array2):
        return False

    for value1, value2 in zip(array1, array2):
        if compare_by(value1, value2) == "buffer":
            if bytes(value1) != bytes(value2):
                return False
        elif not _identical(value1, value2):
            return False

    return True


def compare_by(
    object1: Any, object2: Any
) -> Literal["object", "array", "buffer", "identity"]:
    """Tell how two values should be compared."""
    if isinstance(object1, Mapping) and isinstance(object2, Mapping):
        return "object"
    if isinstance(object1, _SEQUENCES) and isinstance(object2, _SEQUENCES):
        return "array"
    if isinstance(object1, _BYTES) and isinstance(object2, _BYTES):
        return "buffer"
    return "identity"


def has_keys(value: Any) -> bool:
    """Return True if the value carries at least one property."""
    if isinstance(value, Mapping):
        return len(value) > 0
    if isinstance(value, (*_SEQUENCES, *_BYTES, str)):
        return len(value) > 0
    return bool(getattr(value, "__dict__", None))


def compare_uris(url1: str, url2: str) -> bool:
    """Return True if both urls point to the same deployment and database.

    Hosts may be listed in any order. ``mongodb+srv`` urls are never parsed
    since that needs a DNS lookup, they only match themselves.
    """
    if url1 == url2:
        return True

    scheme1, _, _ = url1.partition("://")
    scheme2, _, _ = url2.partition("://")
    if scheme1 != scheme2 or scheme1 != "mongodb":
        return False

    try:
        uri1 = parse_uri(url1, validate=False)
        uri2 = parse_uri(url2, validate=False)
    except (ConfigurationError, InvalidURI, ValueError):
        return False

    if any(uri1[field] != uri2[field] for field in _URI_FIELDS):
        return False

    if not compare(_options(uri1), _options(uri2)):
        return False

    hosts1 = uri1["nodelist"]
    hosts2 = uri2["nodelist"]
    if len(hosts1) != len(hosts2):
        return False
    return all(host in hosts2 for host in hosts1)


def _options(uri: dict[str, Any]) -> dict[str, Any]:
    return {str(key).lower(): value for key, value in uri["options"].items()}


def _compare_values(value1: Any, value2: Any) -> bool:
    comparison = compare_by(value1, value2)
    if comparison == "object":
        return compare(value1, value2)
    if comparison == "array":
        return compare_arrays(value1, value2)
    if comparison == "buffer":
        return bytes(value1) == bytes(value2)
    return _identical(value1, value2)


def _identical(value1: Any, value2: Any) -> bool:
    # Scalars behave like primitives, everything else compares by identity
    if value1 is value2:
        return True
    if isinstance(value1, bool) or isinstance(value2, bool):
        return False
    if isinstance(value1, (int, float)) and isinstance(value2, (int, float)):
        return value1 == value2
    if isinstance(value1, str) and isinstance(value2, str):
        return value1 == value2
    return False
