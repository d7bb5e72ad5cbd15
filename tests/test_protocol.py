import json

import pytest

from msgpattern.protocol import (
    Pattern,
    Request,
    Response,
    encode_frame,
    parse_request,
)


def test_parse_object_pattern():
    req = parse_request(b'{"id":"abc","pattern":{"cmd":"ping"},"data":{"x":1}}')
    assert req == Request(id="abc", pattern=Pattern(cmd="ping"), data={"x": 1})


def test_parse_string_pattern():
    body = json.dumps({"id": "n1", "pattern": json.dumps({"cmd": "sum"}), "data": [1, 2]})
    req = parse_request(body.encode())
    assert req.pattern.cmd == "sum"
    assert req.data == [1, 2]
    assert req.id == "n1"


def test_parse_accepts_text():
    req = parse_request('{"pattern":{"cmd":"ping"}}')
    assert req.pattern.cmd == "ping"
    assert req.id == ""
    assert req.data is None


def test_field_names_match_case_insensitively():
    req = parse_request(b'{"ID":"q","Pattern":{"Cmd":"ping"}}')
    assert req.pattern.cmd == "ping"
    assert req.id == "q"


def test_null_pattern_gives_empty_command():
    assert parse_request(b'{"pattern":null}').pattern.cmd == ""


@pytest.mark.parametrize(
    "body",
    [
        b'{"id":"1"}',
        b'{"pattern":5}',
        b'{"pattern":{"cmd":7}}',
        b'{"pattern":"not json"}',
        b'{"pattern":"[1,2]"}',
    ],
)
def test_bad_pattern_is_rejected(body):
    with pytest.raises(ValueError, match="invalid pattern format"):
        parse_request(body)


@pytest.mark.parametrize("body", [b"{not json", b"[1,2]", b'{"id":3,"pattern":{"cmd":"a"}}'])
def test_bad_body_is_rejected(body):
    with pytest.raises(ValueError):
        parse_request(body)


def test_empty_response_has_no_fields():
    assert Response().to_dict() == {}
    assert Response().to_json() == b"{}"


def test_success_response_wire_bytes():
    resp = Response(response="pong", id="7")
    assert resp.to_json() == b'{"id":"7","response":"pong"}'


def test_error_response_field_order():
    resp = Response(err="Unknown pattern", status="error", is_disposed=True)
    assert resp.to_json() == b'{"isDisposed":true,"status":"error","err":"Unknown pattern"}'


def test_falsy_payload_is_kept():
    assert Response(response=False).to_dict() == {"response": False}


def test_html_characters_are_escaped():
    encoded = Response(response="<a&b>").to_json()
    assert b"<" not in encoded and b"&" not in encoded
    assert b"\\u003c" in encoded
    assert json.loads(encoded) == {"response": "<a&b>"}


def test_json_round_trip_matches_dict():
    resp = Response(id="x", response={"k": [1, "é"]}, status="ok")
    assert json.loads(resp.to_json()) == resp.to_dict()


def test_frame_layout():
    payload = Response(response="pong").to_json()
    prefix, sep, rest = encode_frame(payload).partition(b"#")
    assert sep == b"#"
    assert int(prefix) == len(payload)
    assert rest == payload


def test_frame_counts_bytes_not_characters():
    prefix, _, rest = encode_frame("é").partition(b"#")
    assert int(prefix) == len("é".encode("utf-8"))
    assert rest.decode("utf-8") == "é"