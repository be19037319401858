"""Tests for segment codecs."""

from segment_storage_sql.codec import BinaryCodec
from segment_storage_sql.codec import JSON_CODEC
from segment_storage_sql.codec import lookup_codec
from segment_storage_sql.codec import make_codec
from segment_storage_sql.codec import PICKLE_CODEC
from segment_storage_sql.codec import TextCodec
from segment_storage_sql.exceptions import ConfigurationError
from segment_storage_sql.interfaces import ICodec

import pytest


class TestMakeCodec:
    def test_text_pair(self):
        codec = make_codec(serialize_text=str.upper, deserialize_text=str.lower)
        assert isinstance(codec, TextCodec)
        assert codec.binary is False
        assert codec.serialize("a") == "A"

    def test_binary_pair(self):
        codec = make_codec(serialize_binary=bytes, deserialize_binary=bytes)
        assert isinstance(codec, BinaryCodec)
        assert codec.binary is True

    def test_both_rejected(self):
        with pytest.raises(ConfigurationError, match="mutually exclusive"):
            make_codec(
                serialize_text=str, deserialize_text=str,
                serialize_binary=bytes, deserialize_binary=bytes,
            )

    def test_neither_rejected(self):
        with pytest.raises(ConfigurationError, match="is required"):
            make_codec()

    def test_half_pair_rejected(self):
        with pytest.raises(ConfigurationError, match="Both serialize"):
            make_codec(serialize_text=str)

    def test_half_pairs_of_each_kind_rejected(self):
        with pytest.raises(ConfigurationError, match="mutually exclusive"):
            make_codec(serialize_text=str, deserialize_binary=bytes)


class TestBuiltinCodecs:
    def test_provide_interface(self):
        assert ICodec.providedBy(JSON_CODEC)
        assert ICodec.providedBy(PICKLE_CODEC)

    def test_json_is_text(self):
        stored = JSON_CODEC.serialize([1, "a", {"b": None}])
        assert isinstance(stored, str)
        assert JSON_CODEC.deserialize(stored) == [1, "a", {"b": None}]

    def test_pickle_is_binary(self):
        stored = PICKLE_CODEC.serialize({"datoms": [(1, ":name", "Ivan")]})
        assert isinstance(stored, bytes)
        assert PICKLE_CODEC.deserialize(stored) == {
            "datoms": [(1, ":name", "Ivan")]
        }

    def test_lookup(self):
        assert lookup_codec("json") is JSON_CODEC
        assert lookup_codec("bytes").binary is True
        assert lookup_codec("text").binary is False

    def test_lookup_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown codec"):
            lookup_codec("edn")
