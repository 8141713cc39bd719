import pytest

from appcallback.cloudevent import decode_event_data, parse_cloud_event

_ENVELOPE = """{
    "specversion" : "1.0",
    "type" : "com.github.pull.create",
    "source" : "https://example.com/cloudevents/spec/pull",
    "subject" : "123",
    "id" : "A234-1234-1234",
    "time" : "2018-04-05T17:31:00Z",
    "comexampleextension1" : "value",
    "comexampleothervalue" : 5,
    "pubsubname" : "messages",
    "topic" : "test",
    "datacontenttype" : "%s",
    %s
}"""


def _envelope(content_type, member):
    return _ENVELOPE % (content_type, member)


@pytest.mark.parametrize(
    "body, expected",
    [
        (
            _envelope("application/json", '"data" : {"message":"hello"}'),
            {"message": "hello"},
        ),
        (
            _envelope("application/json", '"data" : "eyJtZXNzYWdlIjoiaGVsbG8ifQ=="'),
            {"message": "hello"},
        ),
        (
            _envelope(
                "application/json", '"data_base64" : "eyJtZXNzYWdlIjoiaGVsbG8ifQ=="'
            ),
            {"message": "hello"},
        ),
        (
            _envelope(
                "application/octet-stream",
                '"data_base64" : "eyJtZXNzYWdlIjoiaGVsbG8ifQ=="',
            ),
            b'{"message":"hello"}',
        ),
        (
            _envelope("application/json", '"data" : "{\\"message\\":\\"hello\\"}"'),
            {"message": "hello"},
        ),
    ],
    ids=[
        "json-nested",
        "json-base64-in-data",
        "json-base64-in-data_base64",
        "binary-base64-in-data_base64",
        "json-string-escaped",
    ],
)
def test_event_data_handling(body, expected):
    event = parse_cloud_event(body, "messages", "test")
    assert event.data == expected


def test_envelope_fields_are_copied():
    body = _envelope("application/json", '"data" : {"message":"hello"}')
    event = parse_cloud_event(body.encode("utf-8"), "messages", "test")
    assert event.id == "A234-1234-1234"
    assert event.spec_version == "1.0"
    assert event.type == "com.github.pull.create"
    assert event.subject == "123"
    assert event.data_content_type == "application/json"
    assert event.pubsub_name == "messages"
    assert event.topic == "test"


def test_raw_data_keeps_original_text():
    body = '{"pubsubname": "p", "topic": "t", "data" : {"message":"hello"}}'
    event = parse_cloud_event(body, "p", "t")
    assert event.raw_data == b'{"message":"hello"}'
    assert event.decode() == {"message": "hello"}


def test_raw_payload_decode():
    body = """{
        "datacontenttype" : "application/octet-stream",
        "data_base64" : "eyJtZXNzYWdlIjoiaGVsbG8ifQ=="
    }"""
    event = parse_cloud_event(body, "messages", "testRaw")
    assert event.data_content_type == "application/octet-stream"
    assert event.data_base64 == "eyJtZXNzYWdlIjoiaGVsbG8ifQ=="
    assert event.raw_data == b'{"message":"hello"}'
    assert event.data == b'{"message":"hello"}'


def test_missing_topic_is_filled_in():
    body = '{"pubsubname": "messages", "data": 1}'
    event = parse_cloud_event(body, "messages", "orders")
    assert event.topic == "orders"
    assert event.data == 1


def test_empty_body_is_rejected():
    with pytest.raises(ValueError, match="nil content"):
        parse_cloud_event(b"", "messages", "test")


def test_none_body_is_rejected():
    with pytest.raises(ValueError):
        parse_cloud_event(None, "messages", "test")


def test_non_json_body_is_rejected():
    with pytest.raises(ValueError):
        parse_cloud_event("not JSON", "messages", "test")


def test_array_body_is_rejected():
    with pytest.raises(ValueError):
        parse_cloud_event("[1, 2]", "messages", "test")


def test_non_string_field_is_rejected():
    with pytest.raises(ValueError):
        parse_cloud_event('{"id": 5}', "messages", "test")


def test_event_without_data():
    event = parse_cloud_event('{"id": "x", "pubsubname": "p", "topic": "t"}', "p", "t")
    assert event.data is None
    assert event.raw_data is None


def test_decode_plain_json_number():
    assert decode_event_data(b"42", "", "") == (42, b"42")


def test_decode_plain_string_stays_string():
    value, raw = decode_event_data(b'"hello world"', "", "application/json")
    assert value == "hello world"
    assert raw == b'"hello world"'


def test_decode_invalid_json_keeps_bytes():
    assert decode_event_data(b"not json", "", "") == (b"not json", b"not json")


def test_decode_base64_with_json_content_type():
    value, raw = decode_event_data(None, "eyJhIjoxfQ==", "application/json")
    assert value == {"a": 1}
    assert raw == b'{"a":1}'


def test_decode_invalid_base64_yields_nothing():
    assert decode_event_data(None, "!!!", "application/json") == (None, None)


def test_decode_nothing():
    assert decode_event_data(None, "", "application/json") == (None, None)


def test_decode_prefers_data_over_base64():
    value, raw = decode_event_data(b'{"x":true}', "eyJhIjoxfQ==", "application/json")
    assert value == {"x": True}
    assert raw == b'{"x":true}'