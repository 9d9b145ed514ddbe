"""
Relay Message Model
Wire codec and acknowledgment synthesis for the single message type
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Union

from .errors import DecodeError

# Wire key for the message kind. Kept as "string" for compatibility with
# existing peers; see RelayConfig.kind_key.
DEFAULT_KIND_KEY = "string"

CLIENT_KIND = "client_msg"
SERVER_KIND = "server_response"
RESPONSE_TEMPLATE = "You said: {content}. Thanks for the message! - server."

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

# Lone UTF-16 surrogates survive json.loads but cannot be encoded as UTF-8
_SURROGATE = re.compile(r'[\ud800-\udfff]')


@dataclass(frozen=True)
class Message:
    """A single relay message"""
    kind: str
    content: str
    timestamp: int

    def to_dict(self, kind_key: str = DEFAULT_KIND_KEY) -> Dict[str, Any]:
        """Wire mapping with keys in kind, content, timestamp order"""
        return {
            kind_key: self.kind,
            'content': self.content,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Any, kind_key: str = DEFAULT_KIND_KEY) -> "Message":
        """Build a message from a decoded JSON value, validating every field"""
        if not isinstance(data, dict):
            raise DecodeError(f"expected a JSON object, got {type(data).__name__}")

        kind = _scrub(_require(data, kind_key, str, "a string"))
        content = _scrub(_require(data, 'content', str, "a string"))
        timestamp = _require(data, 'timestamp', int, "an integer")

        # bool is an int subclass but not a JSON integer
        if isinstance(timestamp, bool):
            raise DecodeError("field 'timestamp' must be an integer, got bool")
        if not INT64_MIN <= timestamp <= INT64_MAX:
            raise DecodeError("field 'timestamp' does not fit in 64 bits")

        return cls(kind=kind, content=content, timestamp=timestamp)


def _require(data: Dict[str, Any], key: str, expected: type, description: str) -> Any:
    if key not in data:
        raise DecodeError(f"missing field '{key}'")
    value = data[key]
    if not isinstance(value, expected):
        raise DecodeError(f"field '{key}' must be {description}, got {type(value).__name__}")
    return value


def _scrub(text: str) -> str:
    """Replace unpaired surrogates with U+FFFD"""
    return _SURROGATE.sub('\ufffd', text)


def decode_message(frame: Union[str, bytes], kind_key: str = DEFAULT_KIND_KEY) -> Message:
    """Parse one frame into a Message, raising DecodeError on anything malformed"""
    if isinstance(frame, (bytes, bytearray, memoryview)):
        try:
            frame = bytes(frame).decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodeError("frame is not valid UTF-8", e)

    try:
        data = json.loads(frame)
    except RecursionError as e:
        raise DecodeError("frame is nested too deeply", e)
    except ValueError as e:
        # JSONDecodeError, or an integer literal past the int conversion limit
        raise DecodeError("frame is not valid JSON", e)

    return Message.from_dict(data, kind_key)


def encode_message(message: Message, kind_key: str = DEFAULT_KIND_KEY) -> str:
    """Serialize a Message as compact JSON text"""
    return json.dumps(message.to_dict(kind_key), separators=(',', ':'), ensure_ascii=False)


def make_response(message: Message) -> Message:
    """
    Build the server acknowledgment for an inbound message.
    Pure function of the inbound content; the timestamp passes through untouched.
    """
    return Message(
        kind=SERVER_KIND,
        content=RESPONSE_TEMPLATE.format(content=message.content),
        timestamp=message.timestamp,
    )
