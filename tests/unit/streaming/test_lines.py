"""Unit tests for StreamLineSplitter."""

from chatrelay.streaming.lines import StreamLineSplitter


class TestFeed:
    def test_complete_lines_are_returned(self):
        splitter = StreamLineSplitter()
        assert splitter.feed(b"one\ntwo\n") == ["one", "two"]
        assert splitter.pending == ""

    def test_partial_line_is_held_back(self):
        splitter = StreamLineSplitter()
        assert splitter.feed(b"data: {\"a\"") == []
        assert splitter.feed(b": 1}\n") == ['data: {"a": 1}']

    def test_chunk_ending_exactly_at_newline(self):
        splitter = StreamLineSplitter()
        assert splitter.feed(b"first\n") == ["first"]
        assert splitter.feed(b"\n") == [""]

    def test_blank_lines_between_frames(self):
        splitter = StreamLineSplitter()
        assert splitter.feed(b"data: x\n\ndata: y\n\n") == ["data: x", "", "data: y", ""]

    def test_crlf_is_stripped(self):
        splitter = StreamLineSplitter()
        assert splitter.feed(b"data: x\r\n\r\n") == ["data: x", ""]

    def test_split_inside_multibyte_character(self):
        encoded = "café ☕\n".encode("utf-8")
        cut = encoded.index("☕".encode("utf-8")) + 1  # inside the 3-byte sequence
        splitter = StreamLineSplitter()
        assert splitter.feed(encoded[:cut]) == []
        assert splitter.feed(encoded[cut:]) == ["café ☕"]

    def test_byte_by_byte_matches_single_chunk(self):
        data = "data: 日本語\n\ndata: ok\n".encode("utf-8")
        splitter = StreamLineSplitter()
        lines = []
        for i in range(len(data)):
            lines.extend(splitter.feed(data[i:i + 1]))
        assert lines == StreamLineSplitter().feed(data)

    def test_empty_chunk_is_a_no_op(self):
        splitter = StreamLineSplitter()
        assert splitter.feed(b"") == []


class TestFlush:
    def test_returns_unterminated_tail(self):
        splitter = StreamLineSplitter()
        splitter.feed(b"a\nlast")
        assert splitter.flush() == "last"
        assert splitter.pending == ""

    def test_returns_none_when_empty(self):
        splitter = StreamLineSplitter()
        splitter.feed(b"a\n")
        assert splitter.flush() is None

    def test_dangling_partial_character_is_replaced(self):
        splitter = StreamLineSplitter()
        splitter.feed("é".encode("utf-8")[:1])
        assert splitter.flush() == "�"

    def test_instance_is_reusable_after_flush(self):
        splitter = StreamLineSplitter()
        splitter.feed("x".encode() + "é".encode()[:1])
        splitter.flush()
        assert splitter.feed(b"fresh\n") == ["fresh"]
