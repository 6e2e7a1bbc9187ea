"""Salted leaf construction.

Every primitive of a canonicalized document is replaced by the string::

    <salt>:<type>:<value>

- ``salt``: fresh hex from ``secrets.token_hex`` (>= 16 bytes / 128 bits),
  generated independently per primitive and never reused
- ``type``: one of ``string``, ``integer``, ``number``, ``boolean``, ``null``
- ``value``: the primitive's canonical string form

Numeric rendering (applied identically on the issuing and verifying side):
- ``int`` -> decimal digits
- integral ``float``/``Decimal`` -> tag ``integer``, decimal digits
- other ``float``/``Decimal`` -> tag ``number``, plain positional notation
  without trailing zeros (floats via their shortest round-trip repr), so
  equal values render the same whatever their Python type

Unsalting returns ``number`` values as ``float`` unless a ``parse_number``
callable (e.g. ``Decimal``) is given to keep the exact digits.

The salted document is the only artifact that allows a commitment to be
recomputed later. Salts are sensitive: anyone holding them can confirm
guesses of low-entropy values.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

from tradedoc.canonical import canonicalize, is_array, is_object, is_primitive
from tradedoc.core import number_text
from tradedoc.errors import MalformedDocument

MIN_SALT_BYTES = 16


class TypeTag(Enum):
    """Closed set of primitive type tags."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"


def _is_integral(value: Any) -> bool:
    if isinstance(value, float):
        return value.is_integer()
    if isinstance(value, Decimal):
        return value == value.to_integral_value()
    return False


def type_tag(value: Any) -> TypeTag:
    """Return the type tag for a primitive value."""
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return TypeTag.BOOLEAN
    if value is None:
        return TypeTag.NULL
    if isinstance(value, str):
        return TypeTag.STRING
    if isinstance(value, int):
        return TypeTag.INTEGER
    if isinstance(value, (float, Decimal)):
        if not is_primitive(value):
            raise MalformedDocument("$", f"non-finite number not allowed: {value!r}")
        return TypeTag.INTEGER if _is_integral(value) else TypeTag.NUMBER
    raise MalformedDocument("$", f"unsupported primitive type: {type(value).__name__}")


def value_text(value: Any) -> str:
    """Canonical string form of a primitive value."""
    tag = type_tag(value)
    if tag is TypeTag.BOOLEAN:
        return "true" if value else "false"
    if tag is TypeTag.NULL:
        return "null"
    if tag is TypeTag.STRING:
        return value
    if tag is TypeTag.INTEGER:
        return str(int(value))
    return number_text(value)


def generate_salt(salt_bytes: Optional[int] = None) -> str:
    """Generate a fresh random salt (hex) from a CSPRNG."""
    if salt_bytes is None:
        from tradedoc.config import get_config
        salt_bytes = get_config().salting.salt_bytes.get()
    if salt_bytes < MIN_SALT_BYTES:
        raise ValueError(f"salt_bytes must be >= {MIN_SALT_BYTES}, got {salt_bytes}")
    return secrets.token_hex(salt_bytes)


def salt_value(value: Any, salt: str) -> str:
    """Build the ``salt:type:value`` string for one primitive."""
    if not salt or ":" in salt:
        raise ValueError("salt must be non-empty and must not contain ':'")
    return f"{salt}:{type_tag(value).value}:{value_text(value)}"


def salt_document(
    document: Any,
    salt_bytes: Optional[int] = None,
    salt_source: Optional[Callable[[], str]] = None,
) -> Any:
    """Canonicalize ``document`` and salt every primitive.

    Returns the SaltedDocument: same shape, keys sorted, every primitive
    replaced by its salted string. Primitives are salted in canonical
    traversal order; ``salt_source`` replaces the CSPRNG and exists for
    reproducible tests only.
    """
    if salt_source is None:
        if salt_bytes is None:
            from tradedoc.config import get_config
            salt_bytes = get_config().salting.salt_bytes.get()
        size = salt_bytes

        def salt_source() -> str:
            return generate_salt(size)

    def transform(node: Any) -> Any:
        if is_object(node):
            return {k: transform(node[k]) for k in sorted(node)}
        if is_array(node):
            return [transform(item) for item in node]
        return salt_value(node, salt_source())

    return transform(canonicalize(document))


# =============================================================================
# PARSING / UNSALTING
# =============================================================================

@dataclass(frozen=True)
class SaltedValue:
    """A parsed ``salt:type:value`` string."""
    salt: str
    tag: TypeTag
    text: str

    def to_python(self, parse_number: Callable[[str], Any] = float) -> Any:
        """Recover the primitive value."""
        if self.tag is TypeTag.STRING:
            return self.text
        if self.tag is TypeTag.NULL:
            if self.text != "null":
                raise ValueError(f"null value must render as 'null', got {self.text!r}")
            return None
        if self.tag is TypeTag.BOOLEAN:
            if self.text not in ("true", "false"):
                raise ValueError(f"boolean value must be 'true' or 'false', got {self.text!r}")
            return self.text == "true"
        if self.tag is TypeTag.INTEGER:
            return int(self.text)
        return parse_number(self.text)

    def __str__(self) -> str:
        return f"{self.salt}:{self.tag.value}:{self.text}"


def parse_salted_value(salted: str, path: str = "$") -> SaltedValue:
    """Parse a salted string; the value part may itself contain ':'."""
    if not isinstance(salted, str):
        raise MalformedDocument(path, f"salted leaf must be a string, got {type(salted).__name__}")
    parts = salted.split(":", 2)
    if len(parts) != 3 or not parts[0]:
        raise MalformedDocument(path, "salted leaf must have the form salt:type:value")
    salt, tag, text = parts
    try:
        return SaltedValue(salt=salt, tag=TypeTag(tag), text=text)
    except ValueError:
        raise MalformedDocument(path, f"unknown type tag: {tag!r}") from None


def unsalt_document(
    salted_document: Any,
    path: str = "$",
    parse_number: Callable[[str], Any] = float,
) -> Any:
    """Strip salts and type tags, returning the raw document values.

    ``parse_number`` converts ``number`` texts; pass ``Decimal`` to avoid
    float rounding.
    """
    if is_object(salted_document):
        return {
            k: unsalt_document(v, f"{path}.{k}", parse_number)
            for k, v in salted_document.items()
        }
    if is_array(salted_document):
        return [
            unsalt_document(item, f"{path}[{i}]", parse_number)
            for i, item in enumerate(salted_document)
        ]
    parsed = parse_salted_value(salted_document, path)
    try:
        return parsed.to_python(parse_number)
    except (ValueError, ArithmeticError) as ex:
        raise MalformedDocument(path, str(ex)) from None
