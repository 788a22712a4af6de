"""
Ultralight 2.0 payload codec.

Measures:        k1|v1|k2|v2#k3|v3   or   k1=v1|k2=v2#k3=v3
Command:         <device_id>@<command>|k1=v1|k2=v2
Command result:  <device_id>@<command>|<result>

Separators (#, |, =, @) cannot be escaped. Values containing them are the
caller's problem; nothing here unescapes or reinterprets them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from iotagent_ul.errors import ParseError

GROUP_SEPARATOR = "#"
FIELD_SEPARATOR = "|"
VALUE_SEPARATOR = "="
DEVICE_SEPARATOR = "@"

@dataclass(frozen=True, slots=True)
class CommandInvocation:
    device_id: str
    command: str
    params: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CommandResult:
    device_id: str
    command: str
    result: Optional[str]


def _split_pairs(group: str, tokens: list[str]) -> list[str]:
    # k1=v1|k2=v2: every token must be exactly one non-empty key/value pair
    flat: list[str] = []
    for token in tokens:
        parts = token.split(VALUE_SEPARATOR)
        if len(parts) != 2 or not all(parts):
            raise ParseError(f"Parsing group: {group!r}", group)
        flat.extend(parts)
    return flat


def _parse_group(group: str) -> dict[str, str]:
    tokens = group.split(FIELD_SEPARATOR)
    if any(VALUE_SEPARATOR in t for t in tokens):
        tokens = _split_pairs(group, tokens)
    elif len(tokens) % 2 != 0 or any(not t for t in tokens):
        raise ParseError(f"Parsing group: {group!r}", group)

    out: dict[str, str] = {}
    for key, value in zip(tokens[0::2], tokens[1::2]):
        # Later keys overwrite earlier ones within a group.
        out[key] = value
    return out


def parse_measures(payload: str) -> list[dict[str, str]]:
    """
    Parse a measure reporting payload into one dict per measure group.

    A group is either k1|v1|k2|v2 or k1=v1|k2=v2. Raises ParseError on an
    empty token, an odd number of tokens, or a k=v token that is not exactly
    one pair.
    """
    return [_parse_group(group) for group in payload.split(GROUP_SEPARATOR)]


def _parse_header(payload: str, fields: list[str]) -> tuple[str, str]:
    if not fields or DEVICE_SEPARATOR not in fields[0]:
        raise ParseError(f"Parsing command: {payload!r}", payload)
    device_data = fields[0].split(DEVICE_SEPARATOR)
    return device_data[0], device_data[1]


def parse_command(payload: str) -> CommandInvocation:
    fields = payload.split(FIELD_SEPARATOR)
    device_id, command = _parse_header(payload, fields)

    params: dict[str, str] = {}
    for attr in fields[1:]:
        parts = attr.split(VALUE_SEPARATOR)
        if len(parts) != 2:
            raise ParseError(f"Extracting attribute: {attr!r}", payload)
        params[parts[0]] = parts[1]

    return CommandInvocation(device_id=device_id, command=command, params=params)


def parse_result(payload: str) -> CommandResult:
    """
    Parse a command result payload.

    Only the first segment after the header is the result; any further
    segments are discarded. result is None when there is no segment at all.
    """
    fields = payload.split(FIELD_SEPARATOR)
    device_id, command = _parse_header(payload, fields)
    result = fields[1] if len(fields) > 1 else None
    return CommandResult(device_id=device_id, command=command, result=result)


def _check_atom(value: str, what: str, reserved: str) -> str:
    value = str(value)
    if not value:
        raise ParseError(f"{what} must be non-empty")
    bad = [c for c in reserved if c in value]
    if bad:
        raise ParseError(f"{what} {value!r} contains reserved characters {bad}")
    return value


def _encode_pairs(attributes: Mapping[str, object]) -> list[str]:
    return [
        f"{_check_atom(key, 'key', '#|=@')}{VALUE_SEPARATOR}{value}"
        for key, value in attributes.items()
    ]


def encode_measures(groups: Iterable[Mapping[str, object]]) -> str:
    encoded = []
    for group in groups:
        pairs = _encode_pairs(group)
        if not pairs:
            raise ParseError("measure group must contain at least one attribute")
        encoded.append(FIELD_SEPARATOR.join(pairs))
    return GROUP_SEPARATOR.join(encoded)


def encode_command(device_id: str, command: str, params: Optional[Mapping[str, object]] = None) -> str:
    header = (
        f"{_check_atom(device_id, 'device_id', '@|')}"
        f"{DEVICE_SEPARATOR}{_check_atom(command, 'command', '@|')}"
    )
    return FIELD_SEPARATOR.join([header, *_encode_pairs(params or {})])


def encode_result(device_id: str, command: str, result: Optional[object]) -> str:
    header = (
        f"{_check_atom(device_id, 'device_id', '@|')}"
        f"{DEVICE_SEPARATOR}{_check_atom(command, 'command', '@|')}"
    )
    if result is None:
        return header
    return f"{header}{FIELD_SEPARATOR}{result}"
