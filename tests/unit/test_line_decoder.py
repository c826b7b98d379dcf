"""Unit tests for CRLF record splitting on the serial read path."""

from hc06bridge.serial_session import LineDecoder


class TestLineDecoder:
    """Test splitting of the inbound byte stream."""

    def test_single_complete_line(self):
        decoder = LineDecoder()

        assert decoder.feed(b"#FF5733\r\n") == ["#FF5733"]
        assert decoder.pending == 0

    def test_partial_line_is_held_until_delimiter(self):
        decoder = LineDecoder()

        assert decoder.feed(b"AB") == []
        assert decoder.pending == 2
        assert decoder.feed(b"C\r\n") == ["ABC"]
        assert decoder.pending == 0

    def test_delimiter_split_across_reads(self):
        decoder = LineDecoder()

        assert decoder.feed(b"ACK:MODE:1\r") == []
        assert decoder.feed(b"\n") == ["ACK:MODE:1"]

    def test_several_lines_in_one_read_keep_order(self):
        decoder = LineDecoder()

        lines = decoder.feed(b"one\r\ntwo\r\nthree\r\nfo")

        assert lines == ["one", "two", "three"]
        assert decoder.feed(b"ur\r\n") == ["four"]

    def test_bare_cr_or_lf_does_not_end_a_record(self):
        decoder = LineDecoder()

        assert decoder.feed(b"a\rb\nc\r\n") == ["a\rb\nc"]

    def test_empty_record(self):
        decoder = LineDecoder()

        assert decoder.feed(b"\r\n") == [""]

    def test_multibyte_character_split_across_reads(self):
        decoder = LineDecoder()
        encoded = "빨강\r\n".encode("utf-8")

        assert decoder.feed(encoded[:4]) == []
        assert decoder.feed(encoded[4:]) == ["빨강"]

    def test_invalid_bytes_are_replaced(self):
        decoder = LineDecoder()

        assert decoder.feed(b"ok\xff\r\n") == ["ok�"]

    def test_reset_discards_partial_input(self):
        decoder = LineDecoder()
        decoder.feed(b"stale")

        decoder.reset()

        assert decoder.pending == 0
        assert decoder.feed(b"fresh\r\n") == ["fresh"]
