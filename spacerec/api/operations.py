"""
Operation catalog: maps GraphQL operation names to the opaque query ids the
server expects, discovered by scanning the platform's client bundles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, Optional

import esprima

from spacerec.api.scanner import iter_enclosing_objects
from spacerec.errors import OperationNotFound, OperationsNotFound

logger = logging.getLogger(__name__)

OPERATION_MARKER = "operationName:"

_FIELDS = {
    "queryId": "query_id",
    "operationName": "name",
    "operationType": "kind",
}


@dataclass(frozen=True)
class Operation:
    query_id: str
    name: str
    kind: str


def extract_string_properties(fragment: str) -> Dict[str, str]:
    """Parse an object-literal fragment and return its string-valued keys.

    The fragment is wrapped in parentheses so it parses as an expression
    rather than a block. Non-string values (nested objects, arrays, numbers)
    are left out. Raises whatever the parser raises on malformed input.
    """
    program = esprima.parseScript("(" + fragment + ")")
    out: Dict[str, str] = {}
    for stmt in program.body:
        if stmt.type != "ExpressionStatement" or stmt.expression.type != "ObjectExpression":
            continue
        for prop in stmt.expression.properties:
            if prop.type != "Property":
                continue
            key = prop.key
            if key.type == "Identifier":
                name = key.name
            elif key.type == "Literal" and isinstance(key.value, str):
                name = key.value
            else:
                continue
            value = prop.value
            if value is not None and value.type == "Literal" and isinstance(value.value, str):
                out[name] = value.value
    return out


def _parse_operation(fragment: str) -> Optional[Operation]:
    try:
        props = extract_string_properties(fragment)
    except Exception as e:
        # bundles carry decoys and half-matching objects; skip them
        logger.debug(f"skipping unparsable fragment ({e}): {fragment[:80]!r}")
        return None
    fields = {attr: props.get(key, "") for key, attr in _FIELDS.items()}
    if not all(fields.values()):
        return None
    return Operation(**fields)


def extract_operations(src: str) -> Dict[str, Operation]:
    """Best-effort scan of bundle source; later duplicates overwrite earlier ones."""
    operations: Dict[str, Operation] = {}
    for fragment in iter_enclosing_objects(src, OPERATION_MARKER):
        op = _parse_operation(fragment)
        if op is not None:
            operations[op.name] = op
    return operations


class OperationCatalog(Mapping[str, Operation]):
    """Read-only name -> Operation mapping, built once."""

    def __init__(self, operations: Mapping[str, Operation]):
        self._ops = MappingProxyType(dict(operations))

    @classmethod
    def discover(cls, sources: Iterable[str]) -> "OperationCatalog":
        found: Dict[str, Operation] = {}
        for src in sources:
            found.update(extract_operations(src))
        if not found:
            raise OperationsNotFound("operations not found")
        return cls(found)

    def require(self, name: str) -> Operation:
        try:
            return self._ops[name]
        except KeyError:
            raise OperationNotFound(name) from None

    def __getitem__(self, name: str) -> Operation:
        return self._ops[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._ops)

    def __len__(self) -> int:
        return len(self._ops)
