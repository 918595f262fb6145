"""
wire_codec.py - Length-prefixed framing for structured bus payloads

Frame layout::

    [4-byte big-endian unsigned length][UTF-8 JSON, exactly <length> bytes]

Security: payloads are JSON, never pickle.
"""
import json
import struct
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Union
from errors import CodecError
from models import AnalyzedText, PersonName

LENGTH_PREFIX = struct.Struct(">I")

Buffer = Union[bytes, bytearray, memoryview]


def frame(value: Any) -> bytes:
    """Serialize ``value`` to JSON and prepend its byte length"""
    try:
        payload = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise CodecError(f"Value is not JSON-serializable: {e}", original_error=e) from e
    return LENGTH_PREFIX.pack(len(payload)) + payload


def read_frame(buffer: Buffer, position: int = 0) -> Tuple[bytes, int]:
    """
    Extract the frame payload starting at ``position``.

    Returns the payload bytes and the position right after the frame, so
    consecutive frames can be read from one shared buffer.
    """
    if position < 0:
        raise CodecError(f"Negative frame position: {position}")

    header_end = position + LENGTH_PREFIX.size
    if header_end > len(buffer):
        raise CodecError(
            f"Buffer too short for length prefix at position {position} "
            f"({len(buffer)} bytes)"
        )

    (length,) = LENGTH_PREFIX.unpack_from(buffer, position)
    payload_end = header_end + length
    if payload_end > len(buffer):
        raise CodecError(
            f"Length prefix {length} exceeds buffer: only {len(buffer) - header_end} bytes available"
        )

    return bytes(buffer[header_end:payload_end]), payload_end


def unframe(buffer: Buffer, position: int = 0) -> Any:
    """Read one frame and parse its JSON payload"""
    payload, _ = read_frame(buffer, position)
    try:
        return json.loads(payload.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CodecError(f"Malformed frame payload: {e}", original_error=e) from e


class MessageCodec(ABC):
    """Typed codec over the length-prefixed frame"""

    name: str = ""

    @abstractmethod
    def accepts(self, value: Any) -> bool:
        """Whether this codec is the default for ``value``"""
        pass

    @abstractmethod
    def to_json(self, value: Any) -> Any:
        pass

    @abstractmethod
    def from_json(self, data: Any) -> Any:
        pass

    def encode_to_wire(self, value: Any) -> bytes:
        return frame(self.to_json(value))

    def decode_from_wire(self, buffer: Buffer, position: int = 0) -> Any:
        data = unframe(buffer, position)
        try:
            return self.from_json(data)
        except CodecError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise CodecError(f"{self.name}: unexpected payload shape: {e}", original_error=e) from e


def _is_string_list(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value)


class StringArrayCodec(MessageCodec):
    """Token, tag and sentence arrays"""

    name = "StringArrayCodec"

    def accepts(self, value: Any) -> bool:
        return _is_string_list(value)

    def to_json(self, value: Any) -> List[str]:
        if not _is_string_list(value):
            raise CodecError(f"{self.name} expects a sequence of strings, got {type(value).__name__}")
        return list(value)

    def from_json(self, data: Any) -> List[str]:
        if not isinstance(data, list) or not _is_string_list(data):
            raise CodecError(f"{self.name} expected a JSON array of strings")
        return data


class PersonNameListCodec(MessageCodec):
    """Replies of the person name finder"""

    name = "PersonNameListCodec"

    def accepts(self, value: Any) -> bool:
        return (
            isinstance(value, (list, tuple))
            and len(value) > 0
            and all(isinstance(item, PersonName) for item in value)
        )

    def to_json(self, value: Any) -> List[Dict[str, Any]]:
        return [name.to_dict() for name in value]

    def from_json(self, data: Any) -> List[PersonName]:
        if not isinstance(data, list):
            raise CodecError(f"{self.name} expected a JSON array")
        return [PersonName.from_dict(item) for item in data]


class AnalyzedTextCodec(MessageCodec):
    """Full analysis documents, also the format stored under ``nlp``"""

    name = "AnalyzedTextCodec"

    def accepts(self, value: Any) -> bool:
        return isinstance(value, AnalyzedText)

    def to_json(self, value: AnalyzedText) -> Dict[str, Any]:
        return value.to_dict()

    def from_json(self, data: Any) -> AnalyzedText:
        if not isinstance(data, dict):
            raise CodecError(f"{self.name} expected a JSON object")
        return AnalyzedText.from_dict(data)


class CodecRegistry:
    """Named codecs with default selection by value"""

    def __init__(self, codecs: Optional[List[MessageCodec]] = None):
        self._codecs: Dict[str, MessageCodec] = {}
        for codec in codecs or []:
            self.register(codec)

    def register(self, codec: MessageCodec):
        if not codec.name:
            raise ValueError(f"{type(codec).__name__} has no name")
        self._codecs[codec.name] = codec

    def lookup(self, name: str) -> MessageCodec:
        codec = self._codecs.get(name)
        if codec is None:
            raise CodecError(f"No codec registered under '{name}'")
        return codec

    def codec_for(self, value: Any) -> MessageCodec:
        """First registered codec that accepts ``value``"""
        for codec in self._codecs.values():
            if codec.accepts(value):
                return codec
        raise CodecError(f"No default codec for {type(value).__name__}")


def default_registry() -> CodecRegistry:
    return CodecRegistry([StringArrayCodec(), PersonNameListCodec(), AnalyzedTextCodec()])


_registry = default_registry()


def encode(value: Any) -> Tuple[str, bytes]:
    """Encode with the default codec; returns (codec name, frame)"""
    codec = _registry.codec_for(value)
    return codec.name, codec.encode_to_wire(value)


def decode(codec_name: str, buffer: Buffer, position: int = 0) -> Any:
    return _registry.lookup(codec_name).decode_from_wire(buffer, position)
