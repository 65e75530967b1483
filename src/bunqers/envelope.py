"""Decoding of the server's ``Response``/``Error`` JSON envelope.

Every body the server sends is an object with either an ``Error`` array or a
``Response`` array. Consumers want one of three shapes on top of that:

- exactly one element (:func:`decode_single`),
- a list plus a sibling ``Pagination`` object (:func:`decode_multiple`),
- heterogeneous named objects unpacked by position (:func:`decode_positional`),
  as returned by installation and session creation.

:class:`EnvelopeCodec` wraps these with a diagnostic sink that receives the raw
body whenever decoding fails.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, List, Protocol, Tuple, TypeVar, Union

from bunqers.errors import ApiError, EnvelopeError, MalformedJson, ShapeMismatch
from bunqers.types import ApiErrorDescription, Multiple, Pagination

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Decoder = Callable[[Any], T]
PositionalKey = Union[str, Tuple[str, ...]]


@dataclass(frozen=True)
class Envelope:
    status_code: int
    raw: bytes
    tree: dict[str, Any]


def parse_envelope(raw: bytes) -> dict[str, Any]:
    try:
        tree = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise MalformedJson(f"Response body is not valid JSON: {error}") from error
    if not isinstance(tree, dict):
        raise ShapeMismatch(f"expected a JSON object at the root, got {type(tree).__name__}")
    return tree


def classify(tree: dict[str, Any], status_code: int | None = None) -> dict[str, Any]:
    """Return ``tree`` if it is a success envelope, raise :class:`ApiError` otherwise.

    An ``Error`` key wins over a ``Response`` key.
    """
    if "Error" not in tree:
        return tree

    raw_errors = tree["Error"]
    if not isinstance(raw_errors, list):
        raise ShapeMismatch(f"expected an array, got {type(raw_errors).__name__}", "Error")
    errors = [
        _decode(ApiErrorDescription.from_dict, value, f"Error[{index}]")
        for index, value in enumerate(raw_errors)
    ]
    raise ApiError(errors, status_code)


def _decode(decoder: Decoder[T], value: Any, path: str) -> T:
    try:
        return decoder(value)
    except ShapeMismatch as error:
        raise error.prefixed(path) from error
    except (KeyError, TypeError, ValueError) as error:
        raise ShapeMismatch(str(error) or type(error).__name__, path) from error


def _response_array(payload: dict[str, Any]) -> List[Any]:
    if "Response" not in payload:
        raise ShapeMismatch("missing field", "Response")
    response = payload["Response"]
    if not isinstance(response, list):
        raise ShapeMismatch(f"expected an array, got {type(response).__name__}", "Response")
    return response


def decode_single(payload: dict[str, Any], decoder: Decoder[T]) -> T:
    response = _response_array(payload)
    if len(response) != 1:
        raise ShapeMismatch(f"expected exactly one element, got {len(response)}", "Response")
    return _decode(decoder, response[0], "Response[0]")


def decode_multiple(payload: dict[str, Any], decoder: Decoder[T]) -> Multiple[T]:
    response = _response_array(payload)
    if "Pagination" not in payload:
        raise ShapeMismatch("missing field", "Pagination")
    pagination = _decode(Pagination.from_dict, payload["Pagination"], "Pagination")
    items = [_decode(decoder, value, f"Response[{index}]") for index, value in enumerate(response)]
    return Multiple(items=items, pagination=pagination)


def decode_positional(payload: dict[str, Any], *keys: PositionalKey) -> Tuple[dict[str, Any], ...]:
    """Unpack ``Response[i][keys[i]]`` for each key.

    A key given as a tuple accepts any one of its alternatives.
    """
    response = _response_array(payload)
    if len(response) < len(keys):
        raise ShapeMismatch(f"expected at least {len(keys)} elements, got {len(response)}", "Response")

    out: List[dict[str, Any]] = []
    for index, key in enumerate(keys):
        path = f"Response[{index}]"
        element = response[index]
        if not isinstance(element, dict):
            raise ShapeMismatch(f"expected an object, got {type(element).__name__}", path)
        alternatives = key if isinstance(key, tuple) else (key,)
        found = next((name for name in alternatives if name in element), None)
        if found is None:
            raise ShapeMismatch(f"expected one of {', '.join(alternatives)}", path)
        value = element[found]
        if not isinstance(value, dict):
            raise ShapeMismatch(f"expected an object, got {type(value).__name__}", f"{path}.{found}")
        out.append(value)
    return tuple(out)


class DiagnosticSink(Protocol):
    def capture(self, raw: bytes, error: Exception) -> None: ...


class NullSink:
    def capture(self, raw: bytes, error: Exception) -> None:
        return None


@dataclass
class MemorySink:
    captured: List[Tuple[bytes, Exception]] = field(default_factory=list)

    def capture(self, raw: bytes, error: Exception) -> None:
        self.captured.append((raw, error))


class FileDumpSink:
    """Writes the last undecodable body to ``path``, replacing any earlier dump."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def capture(self, raw: bytes, error: Exception) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(raw)
        LOGGER.warning("Dumped undecodable response body to %s (%s)", self.path, error)


class EnvelopeCodec:
    def __init__(self, sink: DiagnosticSink | None = None):
        self.sink: DiagnosticSink = sink or NullSink()

    @contextmanager
    def _capturing(self, raw: bytes) -> Iterator[None]:
        try:
            yield
        except EnvelopeError as error:
            self._capture(raw, error)
            raise

    def _capture(self, raw: bytes, error: Exception) -> None:
        try:
            self.sink.capture(raw, error)
        except Exception as sink_error:  # noqa: BLE001
            LOGGER.warning("Diagnostic sink failed: %s", sink_error)

    def parse(self, raw: bytes, status_code: int) -> Envelope:
        with self._capturing(raw):
            tree = parse_envelope(raw)
        return Envelope(status_code=status_code, raw=raw, tree=tree)

    def payload(self, envelope: Envelope) -> dict[str, Any]:
        with self._capturing(envelope.raw):
            return classify(envelope.tree, envelope.status_code)

    def single(self, envelope: Envelope, decoder: Decoder[T]) -> T:
        payload = self.payload(envelope)
        with self._capturing(envelope.raw):
            return decode_single(payload, decoder)

    def multiple(self, envelope: Envelope, decoder: Decoder[T]) -> Multiple[T]:
        payload = self.payload(envelope)
        with self._capturing(envelope.raw):
            return decode_multiple(payload, decoder)

    def positional(
        self,
        envelope: Envelope,
        *keys: PositionalKey,
        decoder: Callable[[Tuple[dict[str, Any], ...]], T] | None = None,
    ) -> Any:
        payload = self.payload(envelope)
        with self._capturing(envelope.raw):
            elements = decode_positional(payload, *keys)
            if decoder is None:
                return elements
            return decoder(elements)
