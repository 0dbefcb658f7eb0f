"""Tests for ptychat.stream.escape (EscapeScanner and display helpers)."""

from __future__ import annotations

import pytest

from ptychat.stream.escape import (
    EscapeScanner,
    Osc7,
    ScanMode,
    Visible,
    normalize_display,
    sanitize_binary_output,
    strip_ansi,
    strip_styling,
    visible_text,
)


def _scan_all(scanner: EscapeScanner, chunks: list[str]) -> list:
    spans: list = []
    for chunk in chunks:
        spans.extend(scanner.feed(chunk))
    return spans


# ---------------------------------------------------------------------------
# Chat mode
# ---------------------------------------------------------------------------


class TestChatMode:
    def test_plain_text_passes_through(self) -> None:
        scanner = EscapeScanner()
        assert scanner.feed("hello world") == [Visible("hello world")]

    def test_empty_chunk(self) -> None:
        assert EscapeScanner().feed("") == []

    def test_sgr_dropped(self) -> None:
        scanner = EscapeScanner()
        spans = scanner.feed("hi \x1b[31mred\x1b[0m!")
        assert spans == [Visible("hi red!")]

    def test_cursor_and_erase_dropped(self) -> None:
        scanner = EscapeScanner()
        spans = scanner.feed("\x1b[2K\x1b[1Gprompt\x1b[?25h")
        assert visible_text(spans) == "prompt"

    def test_two_char_escape_dropped(self) -> None:
        scanner = EscapeScanner()
        assert visible_text(scanner.feed("a\x1b=b\x1b(Bc")) == "abc"

    def test_osc_title_dropped(self) -> None:
        scanner = EscapeScanner()
        assert visible_text(scanner.feed("\x1b]0;my title\x07text")) == "text"

    def test_osc_with_st_terminator(self) -> None:
        scanner = EscapeScanner()
        assert visible_text(scanner.feed("\x1b]2;title\x1b\\text")) == "text"

    def test_dcs_dropped(self) -> None:
        scanner = EscapeScanner()
        assert visible_text(scanner.feed("a\x1bPq#0;2;0;0;0\x1b\\b")) == "ab"

    def test_c1_csi_dropped(self) -> None:
        scanner = EscapeScanner()
        assert visible_text(scanner.feed("\x9b31mX")) == "X"

    def test_bare_esc_ends_string_and_starts_next(self) -> None:
        scanner = EscapeScanner()
        spans = scanner.feed("\x1b]0;title\x1b[1mX")
        assert visible_text(spans) == "X"
        assert not scanner.pending

    def test_newlines_kept(self) -> None:
        scanner = EscapeScanner()
        assert visible_text(scanner.feed("a\r\nb\n")) == "a\r\nb\n"


# ---------------------------------------------------------------------------
# Chunk boundaries
# ---------------------------------------------------------------------------


class TestChunkBoundaries:
    def test_csi_split_across_chunks(self) -> None:
        scanner = EscapeScanner()
        assert scanner.feed("a\x1b[3") == [Visible("a")]
        assert scanner.pending
        assert scanner.feed("1mb") == [Visible("b")]
        assert not scanner.pending

    def test_esc_alone_at_end_of_chunk(self) -> None:
        scanner = EscapeScanner()
        assert scanner.feed("text\x1b") == [Visible("text")]
        assert scanner.feed("[0mmore") == [Visible("more")]

    def test_every_split_gives_same_text(self) -> None:
        stream = "a\x1b[1;32mgreen\x1b[0m\x1b]0;t\x07 b\x1b]7;file:///tmp\x1b\\c"
        whole = visible_text(EscapeScanner().feed(stream))
        for cut in range(len(stream) + 1):
            scanner = EscapeScanner()
            spans = _scan_all(scanner, [stream[:cut], stream[cut:]])
            assert visible_text(spans) == whole

    def test_one_char_at_a_time(self) -> None:
        stream = "x\x1b[31my\x1b]7;file:///home/u\x07z"
        scanner = EscapeScanner()
        spans = _scan_all(scanner, list(stream))
        assert visible_text(spans) == "xyz"
        assert [s for s in spans if isinstance(s, Osc7)] == [Osc7("/home/u")]

    def test_reset_discards_pending(self) -> None:
        scanner = EscapeScanner()
        scanner.feed("\x1b]0;unfinished")
        assert scanner.pending
        scanner.reset()
        assert not scanner.pending
        assert scanner.feed("clean") == [Visible("clean")]


# ---------------------------------------------------------------------------
# OSC-7
# ---------------------------------------------------------------------------


class TestOsc7Extraction:
    def test_bel_terminated(self) -> None:
        scanner = EscapeScanner()
        spans = scanner.feed("\x1b]7;file://host/home/u\x07$ ")
        assert spans == [Osc7("/home/u"), Visible("$ ")]

    def test_st_terminated(self) -> None:
        scanner = EscapeScanner()
        assert scanner.feed("\x1b]7;file:///tmp\x1b\\") == [Osc7("/tmp")]

    def test_order_with_surrounding_text(self) -> None:
        scanner = EscapeScanner()
        spans = scanner.feed("before\x1b]7;file:///a\x07after")
        assert spans == [Visible("before"), Osc7("/a"), Visible("after")]

    def test_drive_letter_path(self) -> None:
        scanner = EscapeScanner()
        spans = scanner.feed("\x1b]7;file:///C:/Users/dev\x07")
        assert spans == [Osc7("C:\\Users\\dev")]

    def test_malformed_uri_dropped(self) -> None:
        scanner = EscapeScanner()
        spans = scanner.feed("\x1b]7;not a uri\x07ok")
        assert spans == [Visible("ok")]

    def test_split_report(self) -> None:
        scanner = EscapeScanner()
        first = scanner.feed("\x1b]7;file:///ho")
        second = scanner.feed("me/dev\x07")
        assert first == []
        assert second == [Osc7("/home/dev")]

    def test_c1_osc(self) -> None:
        scanner = EscapeScanner()
        assert scanner.feed("\x9d7;file:///srv\x9c") == [Osc7("/srv")]


# ---------------------------------------------------------------------------
# Styled and raw modes
# ---------------------------------------------------------------------------


class TestStyledMode:
    def test_sgr_kept_other_csi_dropped(self) -> None:
        scanner = EscapeScanner(ScanMode.STYLED)
        spans = scanner.feed("\x1b[1mbold\x1b[0m\x1b[2K")
        assert visible_text(spans) == "\x1b[1mbold\x1b[0m"

    def test_osc_still_dropped(self) -> None:
        scanner = EscapeScanner(ScanMode.STYLED)
        assert visible_text(scanner.feed("\x1b]0;t\x07x")) == "x"


class TestRawMode:
    def test_everything_forwarded(self) -> None:
        stream = "\x1b[2J\x1b[H\x1b]0;title\x07prompt$ \x1b[?2004h"
        scanner = EscapeScanner(ScanMode.RAW)
        assert visible_text(scanner.feed(stream)) == stream

    def test_osc7_forwarded_and_extracted(self) -> None:
        report = "\x1b]7;file:///work\x07"
        scanner = EscapeScanner(ScanMode.RAW)
        spans = scanner.feed(f"a{report}b")
        assert visible_text(spans) == f"a{report}b"
        assert [s for s in spans if isinstance(s, Osc7)] == [Osc7("/work")]

    def test_malformed_forwarded(self) -> None:
        scanner = EscapeScanner(ScanMode.RAW)
        assert visible_text(scanner.feed("\x1b\x07after")) == "\x1b\x07after"


# ---------------------------------------------------------------------------
# Malformed input and expiry
# ---------------------------------------------------------------------------


class TestMalformed:
    def test_esc_followed_by_control(self) -> None:
        scanner = EscapeScanner()
        spans = scanner.feed("\x1b\x07after")
        assert visible_text(spans) == "\x07after"
        assert not scanner.pending

    def test_csi_interrupted_by_control(self) -> None:
        scanner = EscapeScanner()
        assert visible_text(scanner.feed("\x1b[1\x01x")) == "\x01x"

    def test_never_raises_on_garbage(self) -> None:
        scanner = EscapeScanner()
        garbage = "".join(chr(c) for c in range(0, 256)) * 3
        for i in range(0, len(garbage), 7):
            scanner.feed(garbage[i : i + 7])

    def test_unterminated_sequence_expires(self) -> None:
        scanner = EscapeScanner(max_pending=8)
        stream = "\x1b]0;aaaaaaaaaa"
        spans = scanner.feed(stream)
        assert visible_text(spans) == stream
        assert not scanner.pending

    def test_expiry_across_chunks(self) -> None:
        scanner = EscapeScanner(max_pending=8)
        first = scanner.feed("\x1b]0;aa")
        assert first == []
        second = scanner.feed("aaaaaaaa")
        assert visible_text(first + second) == "\x1b]0;aaaaaaaaaa"

    def test_sequence_within_limit_not_expired(self) -> None:
        scanner = EscapeScanner(max_pending=16)
        assert visible_text(scanner.feed("\x1b]0;short\x07x")) == "x"

    def test_large_chunk_of_aborted_sequences(self) -> None:
        scanner = EscapeScanner()
        stream = "\x1b\x01" * 20_000 + "\x1b[31mend\x1b[0m"
        spans = scanner.feed(stream)
        assert visible_text(spans) == "\x01" * 20_000 + "end"
        assert not scanner.pending

    def test_many_expiries_in_one_chunk(self) -> None:
        stream = ("\x1b]0;" + "a" * 40) * 500 + "\x1b]7;file:///srv\x07tail"
        whole = EscapeScanner(max_pending=32).feed(stream)

        chars = EscapeScanner(max_pending=32)
        pieces = [span for ch in stream for span in chars.feed(ch)]
        assert visible_text(whole) == visible_text(pieces)
        assert visible_text(whole).endswith("tail")
        assert [s for s in whole if isinstance(s, Osc7)] == [Osc7("/srv")]

    def test_max_pending_too_small(self) -> None:
        with pytest.raises(ValueError):
            EscapeScanner(max_pending=1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_strip_ansi(self) -> None:
        assert strip_ansi("\x1b[1;31merror\x1b[0m") == "error"

    def test_strip_styling_keeps_other_codes(self) -> None:
        assert strip_styling("\x1b[1mx\x1b[0m\x1b[2K") == "x\x1b[2K"

    def test_sanitize_keeps_whitespace(self) -> None:
        assert sanitize_binary_output("a\tb\nc\rd") == "a\tb\nc\rd"

    def test_sanitize_drops_controls(self) -> None:
        assert sanitize_binary_output("a\x00b\x07c\x85d") == "abcd"

    def test_normalize_carriage_return_overwrite(self) -> None:
        assert normalize_display("loading 10%\rloading 100%") == "loading 100%"

    def test_normalize_trailing_carriage_return(self) -> None:
        assert normalize_display("done\r") == "done"

    def test_normalize_strips_styling_by_default(self) -> None:
        assert normalize_display("\x1b[32mok\x1b[0m") == "ok"

    def test_normalize_keep_styling(self) -> None:
        line = "\x1b[32mok\x1b[0m\x1b[K"
        assert normalize_display(line, keep_styling=True) == "\x1b[32mok\x1b[0m"
