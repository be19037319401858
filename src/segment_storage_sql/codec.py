"""Codecs converting segment content to its stored form.

A storage uses exactly one codec for its whole lifetime.  Text codecs
store into a character column, binary codecs into a binary column; the
choice also decides which column type the generated DDL uses.
"""

from .exceptions import ConfigurationError
from .interfaces import ICodec

import json
import pickle
import zope.interface


@zope.interface.implementer(ICodec)
class TextCodec:
    """Codec whose stored form is ``str``."""

    binary = False

    def __init__(self, serialize, deserialize):
        self.serialize = serialize
        self.deserialize = deserialize

    def __repr__(self):
        return f"<TextCodec {_name(self.serialize)}/{_name(self.deserialize)}>"


@zope.interface.implementer(ICodec)
class BinaryCodec:
    """Codec whose stored form is ``bytes``."""

    binary = True

    def __init__(self, serialize, deserialize):
        self.serialize = serialize
        self.deserialize = deserialize

    def __repr__(self):
        return f"<BinaryCodec {_name(self.serialize)}/{_name(self.deserialize)}>"


def _name(func):
    return getattr(func, "__qualname__", None) or repr(func)


JSON_CODEC = TextCodec(json.dumps, json.loads)
TEXT_CODEC = TextCodec(str, str)
PICKLE_CODEC = BinaryCodec(pickle.dumps, pickle.loads)
BYTES_CODEC = BinaryCodec(bytes, bytes)

# Names accepted by the ``codec`` key of a <segmentstorage> section
CODECS = {
    "json": JSON_CODEC,
    "text": TEXT_CODEC,
    "pickle": PICKLE_CODEC,
    "bytes": BYTES_CODEC,
}


def make_codec(serialize_text=None, deserialize_text=None,
               serialize_binary=None, deserialize_binary=None):
    """Build a codec from exactly one serialize/deserialize pair.

    Raises ConfigurationError if both pairs, neither pair, or only half
    of a pair is given.
    """
    text = (serialize_text, deserialize_text)
    binary = (serialize_binary, deserialize_binary)
    has_text = any(f is not None for f in text)
    has_binary = any(f is not None for f in binary)

    if has_text and has_binary:
        raise ConfigurationError(
            "Text and binary codecs are mutually exclusive"
        )
    if not (has_text or has_binary):
        raise ConfigurationError(
            "A text or a binary serialize/deserialize pair is required"
        )
    pair = text if has_text else binary
    if None in pair:
        raise ConfigurationError(
            "Both serialize and deserialize must be given"
        )
    if has_text:
        return TextCodec(*pair)
    return BinaryCodec(*pair)


def lookup_codec(name):
    """Return the registered codec called name."""
    try:
        return CODECS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown codec {name!r}; expected one of {sorted(CODECS)}"
        ) from None
