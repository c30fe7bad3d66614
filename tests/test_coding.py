"""Tests for JSONCoding presets, encoders and decoders."""

import json
from dataclasses import dataclass
from datetime import UTC, datetime as dt, timedelta, timezone
from typing_extensions import TypedDict

import pytest
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from restweave.coding import (
    DataStrategy,
    DateStrategy,
    FormattedDates,
    JSONCoding,
    JSONKeys,
    KeyDecodingStrategy,
    KeyEncodingStrategy,
    from_snake_case,
    to_snake_case,
)
from restweave.exceptions import DecodingError


class Session(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    include_inactive: bool
    started_at: dt
    tags: list[str] = []


class Event(BaseModel):
    name: str
    at: dt


class Blob(BaseModel):
    payload: bytes


class SessionFilter(BaseModel):
    include_inactive: bool
    created_at: dt
    owner_ids: list[int] = []


@dataclass
class Snapshot:
    taken_at: dt
    raw_payload: bytes
    label: str = ""


class Window(TypedDict):
    opens_at: dt
    closes_at: dt | None


@pytest.mark.parametrize(
    ("camel", "snake"),
    [
        ("includeInactive", "include_inactive"),
        ("id", "id"),
        ("myURLValue", "my_url_value"),
        ("userID", "user_id"),
    ],
)
def test_to_snake_case(camel, snake):
    assert to_snake_case(camel) == snake


@pytest.mark.parametrize(
    ("snake", "camel"),
    [
        ("include_inactive", "includeInactive"),
        ("id", "id"),
        ("_private_value", "_privateValue"),
        ("a__b", "aB"),
    ],
)
def test_from_snake_case(snake, camel):
    assert from_snake_case(snake) == camel


def test_web_api_round_trip_keeps_milliseconds():
    original = Session(
        session_id="abc123",
        include_inactive=True,
        started_at=dt(2024, 5, 1, 12, 30, 45, 123000, tzinfo=UTC),
        tags=["a", "b"],
    )
    coding = JSONCoding.web_api()

    encoded = coding.make_encoder().encode(original)
    wire = json.loads(encoded)
    decoded = coding.make_decoder().decode(encoded, Session)

    assert wire == {
        "session_id": "abc123",
        "include_inactive": True,
        "started_at": "2024-05-01T12:30:45.123Z",
        "tags": ["a", "b"],
    }
    assert decoded == original


def test_iso8601_encoding_omits_zero_fraction():
    encoder = JSONCoding.iso8601().make_encoder()
    value = dt(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert json.loads(encoder.encode({"at": value})) == {"at": "2024-01-02T03:04:05Z"}


def test_iso8601_encoding_converts_to_utc():
    encoder = JSONCoding.iso8601().make_encoder()
    value = dt(2024, 1, 2, 5, 4, 5, tzinfo=timezone(timedelta(hours=2)))
    assert encoder.to_tree(value) == "2024-01-02T03:04:05Z"


def test_fractional_preset_always_writes_fraction():
    encoder = JSONCoding.web_api_fractional_seconds().make_encoder()
    value = dt(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert encoder.to_tree(value) == "2024-01-02T03:04:05.000Z"


@pytest.mark.parametrize(
    "text", ["2024-01-02T03:04:05Z", "2024-01-02T03:04:05.250Z", "2024-01-02T03:04:05+00:00"]
)
@pytest.mark.parametrize(
    "strategy", [DateStrategy.ISO8601, DateStrategy.ISO8601_FRACTIONAL_SECONDS]
)
def test_iso8601_decoding_accepts_both_forms(text, strategy):
    decoder = JSONCoding().with_dates(strategy).make_decoder()
    event = decoder.decode(json.dumps({"name": "e", "at": text}), Event)
    assert event.at.replace(microsecond=0) == dt(2024, 1, 2, 3, 4, 5, tzinfo=UTC)


def test_invalid_iso8601_date_is_a_decoding_error():
    decoder = JSONCoding.iso8601().make_decoder()
    with pytest.raises(DecodingError) as exc_info:
        decoder.decode(b'{"name": "e", "at": "yesterday"}', Event)
    assert "yesterday" in str(exc_info.value)


def test_invalid_json_is_a_decoding_error():
    with pytest.raises(DecodingError):
        JSONCoding.default().make_decoder().decode(b"{not json", Event)


def test_shape_mismatch_is_a_decoding_error():
    with pytest.raises(DecodingError) as exc_info:
        JSONCoding.default().make_decoder().decode(b'{"name": 1}', Event)
    assert isinstance(exc_info.value.cause, ValidationError)


@pytest.mark.parametrize(
    ("coding", "wire"),
    [
        (JSONCoding.web_api_unix_seconds(), 1704164645),
        (JSONCoding.web_api_unix_milliseconds(), 1704164645000),
    ],
)
def test_epoch_presets(coding, wire):
    value = dt(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert coding.make_encoder().to_tree(value) == wire
    decoded = coding.make_decoder().decode_tree({"name": "e", "at": wire}, Event)
    assert decoded.at == value


def test_epoch_decoding_rejects_strings():
    decoder = JSONCoding.web_api_unix_seconds().make_decoder()
    with pytest.raises(DecodingError):
        decoder.decode_tree({"name": "e", "at": "1704164645"}, Event)


def test_formatted_dates_round_trip():
    formatted = FormattedDates(format="%d/%m/%Y %H:%M", timezone="Europe/Amsterdam")
    coding = JSONCoding().with_dates(formatted)
    value = dt(2024, 7, 1, 10, 0, tzinfo=UTC)

    wire = coding.make_encoder().to_tree({"name": "e", "at": value})
    decoded = coding.make_decoder().decode_tree(wire, Event)

    assert wire["at"] == "01/07/2024 12:00"
    assert decoded.at == value


def test_formatted_dates_validate_zone_and_locale():
    with pytest.raises(ValidationError):
        FormattedDates(format="%Y", timezone="Mars/Olympus")
    with pytest.raises(ValidationError):
        FormattedDates(format="%Y", locale="nl_NL")


def test_dates_nested_in_containers_are_decoded():
    decoder = JSONCoding.iso8601().make_decoder()
    events = decoder.decode(
        b'[{"name": "a", "at": "2024-01-02T03:04:05Z"}]', list[Event]
    )
    by_name = decoder.decode(
        b'{"a": "2024-01-02T03:04:05Z"}', dict[str, dt]
    )
    assert events[0].at == dt(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert by_name["a"] == dt(2024, 1, 2, 3, 4, 5, tzinfo=UTC)


def test_bytes_use_base64_by_default():
    coding = JSONCoding.default()
    encoded = coding.make_encoder().encode(Blob(payload=b"\x00\xffdata"))
    assert json.loads(encoded) == {"payload": "AP9kYXRh"}
    assert coding.make_decoder().decode(encoded, Blob).payload == b"\x00\xffdata"


def test_invalid_base64_is_a_decoding_error():
    with pytest.raises(DecodingError):
        JSONCoding.default().make_decoder().decode(b'{"payload": "***"}', Blob)


def test_json_keys_map_to_strategies():
    coding = JSONCoding().with_keys(JSONKeys.SNAKE_CASE_ENCODING_ONLY)
    assert coding.key_encoding is KeyEncodingStrategy.CONVERT_TO_SNAKE_CASE
    assert coding.key_decoding is KeyDecodingStrategy.USE_DEFAULT_KEYS

    coding = coding.with_keys(JSONKeys.SNAKE_CASE_DECODING_ONLY)
    assert coding.key_encoding is KeyEncodingStrategy.USE_DEFAULT_KEYS
    assert coding.key_decoding is KeyDecodingStrategy.CONVERT_FROM_SNAKE_CASE


def test_output_formatting():
    coding = JSONCoding().with_output_formatting(pretty_printed=True, sorted_keys=True)
    encoded = coding.make_encoder().encode({"b": 1, "a": [1]})
    assert encoded == b'{\n  "a": [\n    1\n  ],\n  "b": 1\n}'
    assert JSONCoding().make_encoder().encode({"b": 1, "a": 2}) == b'{"b":1,"a":2}'


def test_encoder_handles_dataclasses_and_rejects_nan():
    @dataclass
    class Point:
        x: int
        y: float

    encoder = JSONCoding().with_keys(JSONKeys.SNAKE_CASE).make_encoder()
    assert encoder.encode({"myPoint": Point(1, 2.5)}) == b'{"my_point":{"x":1,"y":2.5}}'
    with pytest.raises(ValueError):
        encoder.encode({"x": float("nan")})


def test_presets_are_plain_values():
    assert JSONCoding.default() == JSONCoding()
    assert JSONCoding.web_api().with_dates(DateStrategy.ISO8601) == JSONCoding.web_api()
    assert JSONCoding.web_api().data_encoding is DataStrategy.BASE64


def test_web_api_round_trip_for_model_without_aliases():
    original = SessionFilter(
        include_inactive=True,
        created_at=dt(2024, 1, 2, 3, 4, 5, 123000, tzinfo=UTC),
        owner_ids=[1, 2],
    )
    coding = JSONCoding.web_api()

    encoded = coding.make_encoder().encode(original)
    decoded = coding.make_decoder().decode(encoded, SessionFilter)

    assert json.loads(encoded)["include_inactive"] is True
    assert decoded == original


def test_web_api_decodes_nested_models_without_aliases():
    decoder = JSONCoding.web_api().make_decoder()
    filters = decoder.decode(
        b'{"items": [{"include_inactive": false, "created_at": "2024-01-02T03:04:05Z"}]}',
        dict[str, list[SessionFilter]],
    )
    assert filters["items"][0].include_inactive is False
    assert filters["items"][0].created_at == dt(2024, 1, 2, 3, 4, 5, tzinfo=UTC)


@pytest.mark.parametrize(
    "dates",
    [
        DateStrategy.DEFERRED,
        DateStrategy.SECONDS_SINCE_EPOCH,
        DateStrategy.MILLISECONDS_SINCE_EPOCH,
        DateStrategy.ISO8601,
        DateStrategy.ISO8601_FRACTIONAL_SECONDS,
        FormattedDates(format="%d/%m/%Y %H:%M"),
    ],
)
@pytest.mark.parametrize("base", [JSONCoding.default(), JSONCoding.web_api()])
def test_dataclass_round_trip_for_each_date_strategy(base, dates):
    original = Snapshot(
        taken_at=dt(2024, 1, 2, 3, 4, tzinfo=UTC), raw_payload=b"\x01\x02", label="x"
    )
    coding = base.with_dates(dates)

    encoded = coding.make_encoder().encode(original)
    decoded = coding.make_decoder().decode(encoded, Snapshot)

    assert decoded == original


def test_typed_dict_uses_date_strategy_and_key_decoding():
    formatted = FormattedDates(format="%d/%m/%Y %H:%M")
    coding = JSONCoding.web_api().with_dates(formatted)
    wire = {"opens_at": "02/01/2024 03:04", "closes_at": None}

    window = coding.make_decoder().decode_tree(wire, Window)

    assert window == {"opens_at": dt(2024, 1, 2, 3, 4, tzinfo=UTC), "closes_at": None}
