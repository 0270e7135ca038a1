"""
Value serializers for catalog value types.

Every value type names a representation tag. The tag selects the
serializer that turns stored text into a typed value and back. Attribute
values, schema default values and restricted value keys are all stored
as the serializer's text form.

Invariants:
    - scan(to_string(v)) == v for every valid value
    - Serializers are stateless and shared
    - Tags are stable, they are written into value type documents

How to change safely:
    - Add new tags, never rename existing ones
    - Tightening a scan() can make stored documents undecodable
"""

from __future__ import annotations

import datetime
import re
from enum import Enum
from typing import Any, Protocol

from ..errors import InvalidValueError

_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_.\-]*$")


class ValueKind(Enum):
    """Representation tags of value types."""

    TEXT = "TEXT"
    NAME = "NAME"
    NUMBER = "NUMBER"
    INTEGER = "INTEGER"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TYPE = "TYPE"
    TIMEDOMAIN = "TIMEDOMAIN"

    @classmethod
    def from_str(cls, value: str) -> ValueKind:
        """Convert a stored tag to ValueKind.

        Raises:
            ValueError: If value is not a known tag
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid value type tag '{value}'. Valid tags: {valid}")


class ValueSerializer(Protocol):
    """Converts between stored text and typed values."""

    def scan(self, text: str) -> Any: ...

    def to_string(self, value: Any) -> str: ...


class TextSerializer:
    def scan(self, text: str) -> str:
        if not isinstance(text, str):
            raise InvalidValueError(f"Expected text, got {text!r}", value=text)
        return text

    def to_string(self, value: Any) -> str:
        return self.scan(value)


class NameSerializer(TextSerializer):
    """Names: a letter followed by letters, digits, '_', '.' or '-'."""

    def scan(self, text: str) -> str:
        text = super().scan(text)
        if not _NAME_PATTERN.match(text):
            raise InvalidValueError(f"Invalid name: {text!r}", value=text)
        return text


class NumberSerializer:
    def scan(self, text: str) -> float:
        try:
            return float(text)
        except (TypeError, ValueError):
            raise InvalidValueError(f"Invalid number: {text!r}", value=text) from None

    def to_string(self, value: Any) -> str:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidValueError(f"Invalid number: {value!r}", value=value)
        return repr(float(value))


class IntegerSerializer:
    def scan(self, text: str) -> int:
        try:
            return int(text)
        except (TypeError, ValueError):
            raise InvalidValueError(f"Invalid integer: {text!r}", value=text) from None

    def to_string(self, value: Any) -> str:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidValueError(f"Invalid integer: {value!r}", value=value)
        return str(value)


class BooleanSerializer:
    def scan(self, text: str) -> bool:
        if text == "true":
            return True
        if text == "false":
            return False
        raise InvalidValueError(f"Invalid boolean: {text!r}", value=text)

    def to_string(self, value: Any) -> str:
        if not isinstance(value, bool):
            raise InvalidValueError(f"Invalid boolean: {value!r}", value=value)
        return "true" if value else "false"


class DateSerializer:
    def scan(self, text: str) -> datetime.date:
        try:
            return datetime.date.fromisoformat(text)
        except (TypeError, ValueError):
            raise InvalidValueError(f"Invalid date: {text!r}", value=text) from None

    def to_string(self, value: Any) -> str:
        # datetime is a date subclass but its isoformat does not scan back
        if not isinstance(value, datetime.date) or isinstance(value, datetime.datetime):
            raise InvalidValueError(f"Invalid date: {value!r}", value=value)
        return value.isoformat()


class TypeTagSerializer(TextSerializer):
    """Values are value type tags."""

    def scan(self, text: str) -> str:
        text = super().scan(text)
        try:
            ValueKind.from_str(text)
        except ValueError as e:
            raise InvalidValueError(str(e), value=text) from e
        return text


_SERIALIZERS: dict[ValueKind, ValueSerializer] = {
    ValueKind.TEXT: TextSerializer(),
    ValueKind.NAME: NameSerializer(),
    ValueKind.NUMBER: NumberSerializer(),
    ValueKind.INTEGER: IntegerSerializer(),
    ValueKind.BOOLEAN: BooleanSerializer(),
    ValueKind.DATE: DateSerializer(),
    ValueKind.TYPE: TypeTagSerializer(),
    ValueKind.TIMEDOMAIN: NameSerializer(),
}


def get_serializer(kind: ValueKind) -> ValueSerializer:
    return _SERIALIZERS[kind]
