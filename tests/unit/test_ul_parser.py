from __future__ import annotations

import pytest

from iotagent_ul.errors import ParseError
from iotagent_ul.ul_parser import (
    CommandInvocation,
    CommandResult,
    encode_command,
    encode_measures,
    encode_result,
    parse_command,
    parse_measures,
    parse_result,
)


# -------------------------
# Measures
# -------------------------
def test_single_group_with_equals_pairs():
    assert parse_measures("a=1|b=2") == [{"a": "1", "b": "2"}]


def test_single_group_with_pipe_pairs():
    assert parse_measures("t|15|h|30") == [{"t": "15", "h": "30"}]


def test_multiple_groups_keep_wire_order():
    groups = parse_measures("a=1|b=2#c=3")
    assert groups == [{"a": "1", "b": "2"}, {"c": "3"}]


def test_key_order_within_group_is_preserved():
    group = parse_measures("z=1|a=2|m=3")[0]
    assert list(group) == ["z", "a", "m"]


def test_duplicate_key_later_value_wins():
    assert parse_measures("a=1|a=2") == [{"a": "2"}]


@pytest.mark.parametrize(
    "payload",
    [
        "",            # one empty group
        "a=1|b",       # odd token count
        "a|1|b",       # odd token count, pipe form
        "a=1||b=2",    # empty token
        "a=",          # empty value
        "a=1#",        # empty trailing group
        "#a=1",        # empty leading group
        "a=1|b=2#c",   # bad second group
        "a=b=c=d",     # one token holding two separators
        "k|a=b|c",     # mixed pipe and equals forms
        "t|15|h=30",   # mixed forms, even token count
    ],
)
def test_malformed_measures_raise(payload):
    with pytest.raises(ParseError):
        parse_measures(payload)


def test_parse_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_measures("")


def test_parse_error_keeps_offending_payload():
    with pytest.raises(ParseError) as exc:
        parse_measures("a=1|b")
    assert exc.value.payload == "a=1|b"


@pytest.mark.parametrize("payload", ["a=1|b=2", "a=1|b=2#c=3", "x=1#y=2#z=3|w=4"])
def test_encode_inverts_parse(payload):
    assert encode_measures(parse_measures(payload)) == payload


def test_encode_pipe_form_is_semantically_equivalent():
    encoded = encode_measures(parse_measures("t|15|h|30"))
    assert encoded == "t=15|h=30"
    assert parse_measures(encoded) == parse_measures("t|15|h|30")


def test_encode_rejects_empty_group():
    with pytest.raises(ParseError):
        encode_measures([{}])


def test_encode_rejects_reserved_char_in_key():
    with pytest.raises(ParseError):
        encode_measures([{"a|b": "1"}])


# -------------------------
# Commands
# -------------------------
def test_parse_command_with_params():
    cmd = parse_command("dev1@ping|times=3")
    assert cmd == CommandInvocation(device_id="dev1", command="ping", params={"times": "3"})


def test_parse_command_without_params():
    cmd = parse_command("dev1@reset")
    assert cmd.device_id == "dev1"
    assert cmd.command == "reset"
    assert cmd.params == {}


def test_parse_command_multiple_params():
    cmd = parse_command("dev1@move|x=1|y=2")
    assert cmd.params == {"x": "1", "y": "2"}


@pytest.mark.parametrize("payload", ["dev1", "dev1|ping=1", "", "dev1@ping|times", "dev1@ping|a=b=c"])
def test_malformed_command_raises(payload):
    with pytest.raises(ParseError):
        parse_command(payload)


def test_encode_command_round_trip():
    payload = encode_command("dev1", "ping", {"times": 3})
    assert payload == "dev1@ping|times=3"
    assert parse_command(payload) == CommandInvocation("dev1", "ping", {"times": "3"})


def test_encode_command_without_params():
    assert encode_command("dev1", "reset") == "dev1@reset"


@pytest.mark.parametrize("device_id,command", [("", "ping"), ("dev@1", "ping"), ("dev1", "pi|ng")])
def test_encode_command_rejects_unparseable_header(device_id, command):
    with pytest.raises(ParseError):
        encode_command(device_id, command)


# -------------------------
# Command results
# -------------------------
def test_parse_result():
    assert parse_result("dev1@ping|OK") == CommandResult("dev1", "ping", "OK")


def test_parse_result_discards_extra_segments():
    assert parse_result("dev1@ping|OK|ignored") == CommandResult("dev1", "ping", "OK")


def test_parse_result_without_segment_has_no_result():
    assert parse_result("dev1@ping").result is None


def test_parse_result_without_at_raises():
    with pytest.raises(ParseError):
        parse_result("dev1|OK")


def test_encode_result_round_trip():
    payload = encode_result("dev1", "ping", "pong")
    assert payload == "dev1@ping|pong"
    assert parse_result(payload) == CommandResult("dev1", "ping", "pong")


def test_encode_result_without_result_round_trip():
    parsed = parse_result("dev1@ping")
    payload = encode_result(parsed.device_id, parsed.command, parsed.result)
    assert payload == "dev1@ping"
    assert parse_result(payload) == parsed
