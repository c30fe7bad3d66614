"""Flattening of structured query models into URL query parameters.

A query model (pydantic model, dataclass or mapping) is first encoded to JSON
nodes with the request's ``JSONEncoder``, so key and date strategies apply,
and then flattened:

* nested objects are joined with dots: ``{"filter": {"active": true}}`` ->
  ``filter.active=true``
* arrays are joined with commas: ``{"ids": [1, 2]}`` -> ``ids=1,2``
* ``null`` values are dropped, including null array elements
* array elements that are themselves objects or arrays are written as
  compact JSON
"""

import json
from typing import Any

from .coding import JSONCoding, JSONEncoder
from .exceptions import InvalidQueryParametersError


def encode_query(query: Any, encoder: JSONEncoder | None = None) -> dict[str, str]:
    """Flatten ``query`` into a ``str -> str`` parameter mapping.

    Args:
        query: A pydantic model, dataclass or mapping encoding to a JSON object.
        encoder: Encoder used to produce the JSON nodes. Defaults to
            ``JSONCoding.default()``.

    Returns:
        dict[str, str]: The flattened parameters.

    Raises:
        InvalidQueryParametersError: If the model does not encode to a JSON
            object or contains a value with no query representation.
    """
    encoder = encoder or JSONCoding.default().make_encoder()
    try:
        tree = encoder.to_tree(query)
    except (TypeError, ValueError) as e:
        raise InvalidQueryParametersError(str(e)) from e

    if not isinstance(tree, dict):
        raise InvalidQueryParametersError("Query model must encode to a JSON object.")

    output: dict[str, str] = {}
    for key, value in tree.items():
        _flatten(value, key, output)
    return output


def _flatten(value: Any, key_path: str, output: dict[str, str]) -> None:
    if value is None:
        return
    if isinstance(value, dict):
        for child_key, child_value in value.items():
            _flatten(child_value, f"{key_path}.{child_key}", output)
        return
    if isinstance(value, list):
        output[key_path] = ",".join(
            _stringify(element) for element in value if element is not None
        )
        return
    output[key_path] = _stringify(value)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, dict | list):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    raise InvalidQueryParametersError(
        f"Unsupported query value type: {type(value).__name__}"
    )
