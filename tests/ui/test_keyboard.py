import logging

import pytest

from torrent_console.ui.keyboard import ESCAPE_FOLLOW_TIMEOUT, SpecialKey, read_key

ESC = 27


@pytest.mark.unit
@pytest.mark.parametrize("code,expected", [
    (68, SpecialKey.LEFT),
    (67, SpecialKey.RIGHT),
    (65, SpecialKey.UP),
    (66, SpecialKey.DOWN),
])
def test_arrow_sequences(terminal, code, expected):
    terminal.feed([ESC, ord('['), code])

    assert read_key(terminal, 0.5) is expected
    assert terminal.read_timeouts == [0.5, ESCAPE_FOLLOW_TIMEOUT, ESCAPE_FOLLOW_TIMEOUT]


@pytest.mark.unit
def test_plain_key(terminal):
    terminal.feed("q")
    assert read_key(terminal, 0.5) == "q"


@pytest.mark.unit
def test_timeout_returns_none(terminal):
    assert read_key(terminal, 0.5) is None


@pytest.mark.unit
def test_end_of_input(terminal):
    terminal.feed_eof()
    assert read_key(terminal, 0.5) is SpecialKey.EOF


@pytest.mark.unit
def test_eof_inside_escape_sequence(terminal):
    terminal.feed([ESC, ord('[')])
    terminal.feed_eof()
    assert read_key(terminal, 0.5) is SpecialKey.EOF


@pytest.mark.unit
def test_lone_escape_is_ignored(terminal):
    terminal.feed([ESC])
    assert read_key(terminal, 0.5) is None


@pytest.mark.unit
def test_escape_without_bracket_consumes_one_byte(terminal):
    terminal.feed([ESC, ord('O'), ord('x')])

    assert read_key(terminal, 0.5) is None
    assert read_key(terminal, 0.5) == "x"


@pytest.mark.unit
def test_unknown_escape_code_is_ignored(terminal, caplog):
    terminal.feed([ESC, ord('['), ord('Z')])

    with caplog.at_level(logging.DEBUG):
        assert read_key(terminal, 0.5) is None
    assert "Ignoring escape sequence" in caplog.text
