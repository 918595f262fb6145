"""
Tests for length-prefixed wire framing and the typed codecs
"""
import struct
import pytest
from errors import CodecError
from models import AnalyzedText, PersonName, Sentence
from wire_codec import (
    AnalyzedTextCodec,
    PersonNameListCodec,
    StringArrayCodec,
    default_registry,
    decode,
    encode,
    frame,
    read_frame,
    unframe,
)


def _analyzed():
    name = PersonName(name="John Smith", tokens=("John", "Smith"), probability=0.93)
    return AnalyzedText(sentences=(
        Sentence(raw="Hello world.", tokens=("Hello", "world", "."), pos_tags=("UH", "NN", ".")),
        Sentence(
            raw="John Smith left.",
            tokens=("John", "Smith", "left", "."),
            pos_tags=("NNP", "NNP", "VBD", "."),
            person_names=(name,),
        ),
    ))


class TestFraming:

    def test_length_prefix_is_big_endian_byte_count(self):
        data = frame(["héllo"])
        (length,) = struct.unpack(">I", data[:4])

        assert length == len(data) - 4
        assert data[4:] == '["héllo"]'.encode("utf-8")

    def test_reads_frame_at_position_of_shared_buffer(self):
        buffer = b"junk" + frame(["a", "b|c"]) + frame(["d"])

        payload, next_position = read_frame(buffer, 4)
        assert payload == b'["a","b|c"]'
        assert unframe(buffer, next_position) == ["d"]

    def test_length_prefix_exceeding_buffer(self):
        truncated = frame(["abc"])[:-1]
        with pytest.raises(CodecError, match="exceeds buffer"):
            unframe(truncated)

    def test_buffer_shorter_than_prefix(self):
        with pytest.raises(CodecError, match="too short"):
            unframe(b"\x00\x00")

    def test_malformed_json(self):
        with pytest.raises(CodecError, match="Malformed"):
            unframe(struct.pack(">I", 3) + b"[1,")

    def test_negative_position(self):
        with pytest.raises(CodecError):
            read_frame(frame([]), -1)


class TestStringArrayCodec:

    @pytest.mark.parametrize("tokens", [
        ["John", "Smith", "left", "."],
        [],
        ["with, commas", "and \"quotes\"", "ünïcode", ""],
    ])
    def test_round_trip(self, tokens):
        codec = StringArrayCodec()
        assert codec.decode_from_wire(codec.encode_to_wire(tokens)) == tokens

    def test_rejects_non_string_items(self):
        codec = StringArrayCodec()
        with pytest.raises(CodecError):
            codec.encode_to_wire(["a", 1])
        with pytest.raises(CodecError):
            codec.decode_from_wire(frame({"not": "an array"}))


class TestStructuredCodecs:

    def test_person_name_list_round_trip(self):
        names = [PersonName(name="Kurt", tokens=("Kurt",), probability=0.5)]
        codec = PersonNameListCodec()
        assert codec.decode_from_wire(codec.encode_to_wire(names)) == names

    def test_analyzed_text_round_trip(self):
        codec = AnalyzedTextCodec()
        analyzed = _analyzed()
        assert codec.decode_from_wire(codec.encode_to_wire(analyzed)) == analyzed

    def test_analyzed_text_uses_camel_case_keys(self):
        data = unframe(AnalyzedTextCodec().encode_to_wire(_analyzed()))
        sentence = data["sentences"][1]

        assert sentence["posTags"] == ["NNP", "NNP", "VBD", "."]
        assert sentence["personNames"][0]["name"] == "John Smith"

    def test_bad_shape_is_codec_error(self):
        with pytest.raises(CodecError):
            AnalyzedTextCodec().decode_from_wire(frame({"sentences": [{"raw": "x"}]}))


class TestRegistry:

    def test_default_codec_selection(self):
        registry = default_registry()
        names = [PersonName(name="Mary", tokens=("Mary",), probability=1.0)]

        assert registry.codec_for(["a"]).name == "StringArrayCodec"
        assert registry.codec_for([]).name == "StringArrayCodec"
        assert registry.codec_for(names).name == "PersonNameListCodec"
        assert registry.codec_for(_analyzed()).name == "AnalyzedTextCodec"

    def test_unknown_value_and_name(self):
        registry = default_registry()
        with pytest.raises(CodecError):
            registry.codec_for({"a": 1})
        with pytest.raises(CodecError):
            registry.lookup("NoSuchCodec")

    def test_module_helpers(self):
        codec_name, data = encode(["x", "y"])
        assert decode(codec_name, data) == ["x", "y"]
