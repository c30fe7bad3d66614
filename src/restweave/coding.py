"""Configurable JSON encoding and decoding.

``JSONCoding`` is an immutable description of how dates, keys and binary data
are represented on the wire. ``make_encoder()`` and ``make_decoder()`` turn it
into codec instances. Decoding is type-directed: the target annotation (a
pydantic model, a container of models, ``datetime``, ``bytes``...) decides
which JSON values are dates or binary data, and pydantic performs the final
validation.

Presets such as ``JSONCoding.web_api()`` are ordinary values of the same type.
"""

import base64
import binascii
import dataclasses
import json
import re
import types
from collections.abc import (
    Callable,
    Mapping,
    MutableMapping,
    MutableSequence,
    MutableSet,
    Sequence,
    Set,
)
from datetime import UTC, date, datetime as dt, timedelta
from enum import Enum
from functools import lru_cache
from typing import (
    Annotated,
    Any,
    Self,
    TypeVar,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, TypeAdapter, field_validator
from pydantic_core import to_jsonable_python
from typing_extensions import is_typeddict

from .exceptions import DecodingError

T = TypeVar("T")

EPOCH = dt(1970, 1, 1, tzinfo=UTC)

ISO8601_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
ISO8601_FRACTIONAL_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"

POSIX_LOCALES = frozenset({"en_US_POSIX", "C", "POSIX"})

_ABSTRACT_SEQUENCES = (Sequence, MutableSequence, Set, MutableSet)
_ABSTRACT_MAPPINGS = (Mapping, MutableMapping)


class DateStrategy(str, Enum):
    """How dates are represented in JSON."""

    DEFERRED = "deferred"
    """Leave dates to pydantic (ISO strings out, ISO strings or numbers in)."""
    SECONDS_SINCE_EPOCH = "seconds_since_epoch"
    MILLISECONDS_SINCE_EPOCH = "milliseconds_since_epoch"
    ISO8601 = "iso8601"
    ISO8601_FRACTIONAL_SECONDS = "iso8601_fractional_seconds"


class FormattedDates(BaseModel):
    """Dates as strings in a custom ``strftime``/``strptime`` format.

    Attributes:
        format: The format string, e.g. ``"%Y-%m-%d %H:%M"``.
        timezone: IANA zone applied to naive parsed values and used when
            formatting. None leaves values untouched.
        locale: Only POSIX locales are supported; formatting always uses the
            C locale's month and day names.
    """

    model_config = ConfigDict(frozen=True)

    format: str
    timezone: str | None = "UTC"
    locale: str | None = "en_US_POSIX"

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ValueError(f"Unknown time zone: {value}") from e
        return value

    @field_validator("locale")
    @classmethod
    def _check_locale(cls, value: str | None) -> str | None:
        if value is not None and value not in POSIX_LOCALES:
            raise ValueError(
                f"Unsupported locale {value!r}; use one of {sorted(POSIX_LOCALES)}"
            )
        return value

    @property
    def zone(self) -> ZoneInfo | None:
        return ZoneInfo(self.timezone) if self.timezone else None


DateCoding = DateStrategy | FormattedDates
"""A date strategy: one of the fixed representations or a custom format."""


class KeyDecodingStrategy(str, Enum):
    USE_DEFAULT_KEYS = "use_default_keys"
    CONVERT_FROM_SNAKE_CASE = "convert_from_snake_case"


class KeyEncodingStrategy(str, Enum):
    USE_DEFAULT_KEYS = "use_default_keys"
    CONVERT_TO_SNAKE_CASE = "convert_to_snake_case"


class DataStrategy(str, Enum):
    """How ``bytes`` values are represented in JSON."""

    DEFERRED = "deferred"
    BASE64 = "base64"


class JSONKeys(str, Enum):
    """Simplified key behaviour applied to both directions at once."""

    USE_DEFAULT_KEYS = "use_default_keys"
    SNAKE_CASE = "snake_case"
    SNAKE_CASE_DECODING_ONLY = "snake_case_decoding_only"
    SNAKE_CASE_ENCODING_ONLY = "snake_case_encoding_only"

    @property
    def decoding_strategy(self) -> KeyDecodingStrategy:
        if self in (JSONKeys.SNAKE_CASE, JSONKeys.SNAKE_CASE_DECODING_ONLY):
            return KeyDecodingStrategy.CONVERT_FROM_SNAKE_CASE
        return KeyDecodingStrategy.USE_DEFAULT_KEYS

    @property
    def encoding_strategy(self) -> KeyEncodingStrategy:
        if self in (JSONKeys.SNAKE_CASE, JSONKeys.SNAKE_CASE_ENCODING_ONLY):
            return KeyEncodingStrategy.CONVERT_TO_SNAKE_CASE
        return KeyEncodingStrategy.USE_DEFAULT_KEYS


_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def to_snake_case(key: str) -> str:
    """``"includeInactive"`` -> ``"include_inactive"``.

    Runs of capitals are kept together: ``"myURLValue"`` -> ``"my_url_value"``.
    """
    if not key:
        return key
    key = _ACRONYM_BOUNDARY.sub(r"\1_\2", key)
    key = _WORD_BOUNDARY.sub(r"\1_\2", key)
    return key.lower()


def from_snake_case(key: str) -> str:
    """``"include_inactive"`` -> ``"includeInactive"``.

    Leading and trailing underscores are preserved; keys without an inner
    underscore are returned unchanged.
    """
    core = key.strip("_")
    if "_" not in core:
        return key
    leading = key[: len(key) - len(key.lstrip("_"))]
    trailing = key[len(key.rstrip("_")) :]
    words = [word for word in core.split("_") if word]
    camel = words[0] + "".join(
        word[:1].upper() + word[1:].lower() for word in words[1:]
    )
    return f"{leading}{camel}{trailing}"


def _transform_keys(tree: Any, convert: Callable[[str], str]) -> Any:
    if isinstance(tree, dict):
        return {convert(k): _transform_keys(v, convert) for k, v in tree.items()}
    if isinstance(tree, list):
        return [_transform_keys(item, convert) for item in tree]
    return tree


def _as_utc(value: dt) -> dt:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _format_iso8601(value: dt, *, always_fractional: bool) -> str:
    value = _as_utc(value)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    micros = value.microsecond
    if micros % 1000 == 0:
        if micros or always_fractional:
            text += f".{micros // 1000:03d}"
    else:
        text += f".{micros:06d}"
    return text + "Z"


def _whole_if_integral(number: float) -> int | float:
    return int(number) if number.is_integer() else number


@lru_cache(maxsize=256)
def _cached_adapter(type_: Any) -> TypeAdapter[Any]:
    return TypeAdapter(type_)


def _adapter(type_: Any) -> TypeAdapter[Any]:
    try:
        return _cached_adapter(type_)
    except TypeError:  # unhashable annotation
        return TypeAdapter(type_)


class JSONCoding(BaseModel):
    """JSON encoding and decoding options.

    Attributes:
        date_decoding: How dates are read.
        date_encoding: How dates are written.
        key_decoding: Whether snake_case wire keys become camelCase keys.
        key_encoding: Whether camelCase keys become snake_case on the wire.
        data_decoding: How ``bytes`` values are read.
        data_encoding: How ``bytes`` values are written.
        pretty_printed: Indent encoded output.
        sorted_keys: Sort object keys in encoded output.
    """

    model_config = ConfigDict(frozen=True)

    date_decoding: DateCoding = DateStrategy.DEFERRED
    date_encoding: DateCoding = DateStrategy.DEFERRED
    key_decoding: KeyDecodingStrategy = KeyDecodingStrategy.USE_DEFAULT_KEYS
    key_encoding: KeyEncodingStrategy = KeyEncodingStrategy.USE_DEFAULT_KEYS
    data_decoding: DataStrategy = DataStrategy.BASE64
    data_encoding: DataStrategy = DataStrategy.BASE64
    pretty_printed: bool = False
    sorted_keys: bool = False

    # --- Presets ---

    @classmethod
    def default(cls) -> Self:
        """No assumptions: pydantic handles dates, keys are used verbatim."""
        return cls()

    @classmethod
    def iso8601(cls) -> Self:
        """ISO-8601 date strings."""
        return cls(date_decoding=DateStrategy.ISO8601, date_encoding=DateStrategy.ISO8601)

    @classmethod
    def web_api(cls) -> Self:
        """snake_case keys and ISO-8601 dates, common for web APIs."""
        return cls(
            date_decoding=DateStrategy.ISO8601,
            date_encoding=DateStrategy.ISO8601,
            key_decoding=KeyDecodingStrategy.CONVERT_FROM_SNAKE_CASE,
            key_encoding=KeyEncodingStrategy.CONVERT_TO_SNAKE_CASE,
        )

    @classmethod
    def web_api_fractional_seconds(cls) -> Self:
        """snake_case keys and ISO-8601 dates that always carry a fraction."""
        return cls.web_api().with_dates(DateStrategy.ISO8601_FRACTIONAL_SECONDS)

    @classmethod
    def web_api_unix_seconds(cls) -> Self:
        """snake_case keys and Unix timestamps in seconds."""
        return cls.web_api().with_dates(DateStrategy.SECONDS_SINCE_EPOCH)

    @classmethod
    def web_api_unix_milliseconds(cls) -> Self:
        """snake_case keys and Unix timestamps in milliseconds."""
        return cls.web_api().with_dates(DateStrategy.MILLISECONDS_SINCE_EPOCH)

    # --- Chainable copies ---

    def with_date_decoding(self, strategy: DateCoding) -> Self:
        return self.model_copy(update={"date_decoding": strategy})

    def with_date_encoding(self, strategy: DateCoding) -> Self:
        return self.model_copy(update={"date_encoding": strategy})

    def with_dates(self, strategy: DateCoding) -> Self:
        """Use the same date strategy for decoding and encoding."""
        return self.model_copy(
            update={"date_decoding": strategy, "date_encoding": strategy}
        )

    def with_key_decoding(self, strategy: KeyDecodingStrategy) -> Self:
        return self.model_copy(update={"key_decoding": strategy})

    def with_key_encoding(self, strategy: KeyEncodingStrategy) -> Self:
        return self.model_copy(update={"key_encoding": strategy})

    def with_keys(self, keys: JSONKeys) -> Self:
        return self.model_copy(
            update={
                "key_decoding": keys.decoding_strategy,
                "key_encoding": keys.encoding_strategy,
            }
        )

    def with_output_formatting(
        self, *, pretty_printed: bool | None = None, sorted_keys: bool | None = None
    ) -> Self:
        update: dict[str, bool] = {}
        if pretty_printed is not None:
            update["pretty_printed"] = pretty_printed
        if sorted_keys is not None:
            update["sorted_keys"] = sorted_keys
        return self.model_copy(update=update)

    # --- Codec factories ---

    def make_encoder(self) -> "JSONEncoder":
        return JSONEncoder(self)

    def make_decoder(self) -> "JSONDecoder":
        return JSONDecoder(self)


class JSONEncoder:
    """Encodes Python values to JSON according to a ``JSONCoding``.

    Supports pydantic models, dataclasses, mappings, sequences, enums,
    ``datetime``/``date`` and ``bytes``; other leaves are delegated to
    pydantic's JSON conversion (UUID, Decimal, ...).
    """

    def __init__(self, coding: JSONCoding):
        self.coding = coding

    def encode(self, value: Any) -> bytes:
        """Encodes ``value`` to UTF-8 JSON bytes.

        Raises:
            TypeError: If a value has no JSON representation.
            ValueError: If a float is not finite.
        """
        tree = self.to_tree(value)
        if self.coding.pretty_printed:
            text = json.dumps(
                tree,
                indent=2,
                sort_keys=self.coding.sorted_keys,
                ensure_ascii=False,
                allow_nan=False,
            )
        else:
            text = json.dumps(
                tree,
                separators=(",", ":"),
                sort_keys=self.coding.sorted_keys,
                ensure_ascii=False,
                allow_nan=False,
            )
        return text.encode("utf-8")

    def to_tree(self, value: Any) -> Any:
        """Converts ``value`` into plain JSON nodes (dict/list/str/number/bool/None)."""
        tree = self._encode_value(value)
        if self.coding.key_encoding is KeyEncodingStrategy.CONVERT_TO_SNAKE_CASE:
            tree = _transform_keys(tree, to_snake_case)
        return tree

    def _encode_value(self, value: Any) -> Any:
        if value is None or isinstance(value, bool | int | str):
            return value
        if isinstance(value, float):
            return value
        if isinstance(value, Enum):
            return self._encode_value(value.value)
        if isinstance(value, BaseModel):
            return self._encode_value(value.model_dump(mode="python", by_alias=True))
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return {
                field.name: self._encode_value(getattr(value, field.name))
                for field in dataclasses.fields(value)
            }
        if isinstance(value, dt):
            return self._encode_date(value)
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, bytes | bytearray):
            if self.coding.data_encoding is DataStrategy.BASE64:
                return base64.b64encode(bytes(value)).decode("ascii")
            return to_jsonable_python(bytes(value))
        if isinstance(value, Mapping):
            return {self._encode_key(k): self._encode_value(v) for k, v in value.items()}
        if isinstance(value, list | tuple | set | frozenset):
            return [self._encode_value(item) for item in value]
        return to_jsonable_python(value)

    @staticmethod
    def _encode_key(key: Any) -> str:
        if isinstance(key, Enum):
            key = key.value
        if isinstance(key, str):
            return key
        if isinstance(key, bool | int | float):
            return json.dumps(key)
        raise TypeError(f"Object keys must be strings, got {type(key).__name__}")

    def _encode_date(self, value: dt) -> Any:
        strategy = self.coding.date_encoding
        if isinstance(strategy, FormattedDates):
            zone = strategy.zone
            if zone is not None:
                if value.tzinfo is None:
                    value = value.replace(tzinfo=zone)
                else:
                    value = value.astimezone(zone)
            return value.strftime(strategy.format)
        if strategy is DateStrategy.SECONDS_SINCE_EPOCH:
            return _whole_if_integral((_as_utc(value) - EPOCH) / timedelta(seconds=1))
        if strategy is DateStrategy.MILLISECONDS_SINCE_EPOCH:
            return _whole_if_integral(
                (_as_utc(value) - EPOCH) / timedelta(milliseconds=1)
            )
        if strategy is DateStrategy.ISO8601:
            return _format_iso8601(value, always_fractional=False)
        if strategy is DateStrategy.ISO8601_FRACTIONAL_SECONDS:
            return _format_iso8601(value, always_fractional=True)
        return value.isoformat()


class JSONDecoder:
    """Decodes JSON into typed values according to a ``JSONCoding``."""

    def __init__(self, coding: JSONCoding):
        self.coding = coding

    def decode(self, data: bytes | str, type_: type[T]) -> T:
        """Parses ``data`` and validates it as ``type_``.

        Raises:
            DecodingError: If the data is not JSON or does not match ``type_``.
        """
        try:
            tree = json.loads(data)
        except ValueError as e:
            raise DecodingError(f"Invalid JSON: {e}", cause=e) from e
        return self.decode_tree(tree, type_)

    def decode_tree(self, tree: Any, type_: type[T]) -> T:
        """Validates already-parsed JSON nodes as ``type_``."""
        if self.coding.key_decoding is KeyDecodingStrategy.CONVERT_FROM_SNAKE_CASE:
            tree = _transform_keys(tree, from_snake_case)
        try:
            prepared = self._prepare(tree, type_)
            return _adapter(type_).validate_python(prepared)
        except (ValueError, TypeError) as e:
            # pydantic's ValidationError is a ValueError
            raise DecodingError(
                f"Could not decode {getattr(type_, '__name__', type_)}: {e}", cause=e
            ) from e

    def _prepare(self, value: Any, annotation: Any) -> Any:
        """Rewrites dates and binary data found at typed positions."""
        if value is None or annotation is Any:
            return value
        origin = get_origin(annotation)
        if origin is Annotated:
            return self._prepare(value, get_args(annotation)[0])
        if origin is Union or origin is types.UnionType:
            members = [arg for arg in get_args(annotation) if arg is not type(None)]
            if len(members) == 1:
                return self._prepare(value, members[0])
            return value
        if annotation is dt:
            return self._decode_date(value)
        if annotation is bytes:
            return self._decode_data(value)
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            return self._prepare_model(value, annotation)
        if isinstance(annotation, type) and dataclasses.is_dataclass(annotation):
            return self._prepare_dataclass(value, annotation)
        if is_typeddict(annotation):
            return self._prepare_typed_dict(value, annotation)
        args = get_args(annotation)
        if origin in (list, set, frozenset) or origin in _ABSTRACT_SEQUENCES:
            if isinstance(value, list):
                item_type = args[0] if args else Any
                return [self._prepare(item, item_type) for item in value]
            return value
        if origin is tuple and isinstance(value, list):
            if len(args) == 2 and args[1] is Ellipsis:
                return [self._prepare(item, args[0]) for item in value]
            if len(args) == len(value):
                return [self._prepare(item, arg) for item, arg in zip(value, args)]
            return value
        is_mapping = origin is dict or origin in _ABSTRACT_MAPPINGS
        if is_mapping and isinstance(value, dict):
            value_type = args[1] if len(args) == 2 else Any
            return {k: self._prepare(v, value_type) for k, v in value.items()}
        return value

    @property
    def _converts_keys(self) -> bool:
        return self.coding.key_decoding is KeyDecodingStrategy.CONVERT_FROM_SNAKE_CASE

    def _prepare_model(self, value: Any, model: type[BaseModel]) -> Any:
        fields = {
            name: (field.alias or name, field.annotation)
            for name, field in model.model_fields.items()
        }
        return self._prepare_fields(value, fields)

    def _prepare_dataclass(self, value: Any, cls: type) -> Any:
        hints = get_type_hints(cls, include_extras=True)
        fields = {
            field.name: (field.name, hints.get(field.name, Any))
            for field in dataclasses.fields(cls)
        }
        return self._prepare_fields(value, fields)

    def _prepare_typed_dict(self, value: Any, cls: type) -> Any:
        hints = get_type_hints(cls, include_extras=True)
        return self._prepare_fields(
            value, {name: (name, hint) for name, hint in hints.items()}
        )

    def _prepare_fields(
        self, value: Any, fields: Mapping[str, tuple[str, Any]]
    ) -> Any:
        """Prepares the members of a JSON object mapped onto named fields.

        ``fields`` maps each field name to its input key and annotation. With
        snake_case key decoding, a camelCase key produced from a snake_case
        field key is moved back to that field key.
        """
        if not isinstance(value, dict):
            return value
        prepared = dict(value)
        for name, (key, annotation) in fields.items():
            if self._converts_keys and key not in prepared:
                converted = from_snake_case(key)
                if converted != key and converted in prepared:
                    prepared[key] = prepared.pop(converted)
            for candidate in {name, key}:
                if candidate in prepared:
                    prepared[candidate] = self._prepare(prepared[candidate], annotation)
        return prepared

    def _decode_date(self, value: Any) -> Any:
        strategy = self.coding.date_decoding
        if strategy is DateStrategy.DEFERRED or isinstance(value, dt):
            return value
        if isinstance(strategy, FormattedDates):
            if not isinstance(value, str):
                raise ValueError(f"Expected a date string, got {value!r}")
            try:
                parsed = dt.strptime(value, strategy.format)
            except ValueError as e:
                raise ValueError(
                    f"Date string {value!r} does not match format {strategy.format!r}"
                ) from e
            zone = strategy.zone
            if parsed.tzinfo is None and zone is not None:
                parsed = parsed.replace(tzinfo=zone)
            return parsed
        if strategy in (
            DateStrategy.SECONDS_SINCE_EPOCH,
            DateStrategy.MILLISECONDS_SINCE_EPOCH,
        ):
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise ValueError(f"Expected a numeric timestamp, got {value!r}")
            if strategy is DateStrategy.SECONDS_SINCE_EPOCH:
                return EPOCH + timedelta(seconds=value)
            return EPOCH + timedelta(milliseconds=value)
        if not isinstance(value, str):
            raise ValueError(f"Expected an ISO8601 date string, got {value!r}")
        if strategy is DateStrategy.ISO8601:
            formats = (ISO8601_FORMAT, ISO8601_FRACTIONAL_FORMAT)
        else:
            formats = (ISO8601_FRACTIONAL_FORMAT, ISO8601_FORMAT)
        for date_format in formats:
            try:
                return dt.strptime(value, date_format)
            except ValueError:
                continue
        raise ValueError(f"Invalid ISO8601 date string: {value}")

    def _decode_data(self, value: Any) -> Any:
        if self.coding.data_decoding is DataStrategy.DEFERRED or not isinstance(
            value, str
        ):
            return value
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 data: {e}") from e

