import pytest

from torrent_console.ui.formatting import (
    CLEAR_EOL,
    add_suffix,
    clip,
    cursor_home,
    piece_bar,
    piece_matrix,
    progress_bar,
    strip_ansi,
    styled,
    truncate,
    visible_len,
)


@pytest.mark.unit
def test_styled_wraps_in_sgr():
    text = styled("down", 'green')

    assert text.startswith("\x1b[")
    assert "down" in text
    assert strip_ansi(text) == "down"
    assert styled("plain", "") == "plain"


@pytest.mark.unit
def test_cursor_home_is_top_left():
    assert cursor_home() == "\x1b[1;1H"


@pytest.mark.unit
@pytest.mark.parametrize("value,suffix,expected", [
    (0, "", "      "),
    (0, "/s", "        "),
    (1500, "", " 1.5kB"),
    (250000, "/s", " 250kB/s"),
    (12_300_000, "", "12.3MB"),
    (4_000_000_000, "", " 4.0GB"),
])
def test_add_suffix(value, suffix, expected):
    assert add_suffix(value, suffix) == expected


@pytest.mark.unit
def test_clip_keeps_escape_sequences_intact():
    row = styled("abcdef", 'red') + "ghij"

    clipped = clip(row, 4)

    assert strip_ansi(clipped) == "abcd"
    assert clipped.endswith("\x1b[0m")
    assert clip("short", 10) == "short"
    assert clip("anything", 0) == ""


@pytest.mark.unit
def test_progress_bar_width():
    bar = progress_bar(500, 20)
    assert strip_ansi(bar) == "#" * 10 + "-" * 10

    captioned = progress_bar(250, 10, caption="file.bin")
    assert strip_ansi(captioned) == "file.bin  "
    assert visible_len(progress_bar(2000, 8)) == 8


@pytest.mark.unit
def test_piece_bar_shades_by_completion():
    assert strip_ansi(piece_bar([True] * 10, 5)) == "█" * 5
    assert strip_ansi(piece_bar([False] * 10, 5)) == " " * 5
    assert visible_len(piece_bar([], 7)) == 7
    assert piece_bar([True], 0) == ""


@pytest.mark.unit
def test_piece_matrix_two_pieces_per_cell():
    rows = piece_matrix([True, False, True, True], 2)

    # top row pieces 0,1 over bottom row pieces 2,3
    assert [strip_ansi(r) for r in rows] == ["█▄"]
    assert piece_matrix([], 10) == []


@pytest.mark.unit
def test_truncate():
    assert truncate("ubuntu-24.04-desktop-amd64.iso", 12) == "ubuntu-24..."
    assert truncate("short", 12) == "short"
    assert CLEAR_EOL == "\x1b[K"


@pytest.mark.unit
def test_wide_characters_count_two_cells():
    name = styled("進撃の巨人", 'yellow')

    assert visible_len(name) == 10
    assert visible_len(clip(name + " season 1", 7)) <= 7
    assert strip_ansi(clip("東京の天気", 4)) == "東京"


@pytest.mark.unit
def test_truncate_wide_name():
    short = truncate("進撃の巨人" * 4, 12)

    assert short.endswith("...")
    assert visible_len(short) <= 12


@pytest.mark.unit
def test_progress_bar_wide_caption():
    bar = progress_bar(500, 10, caption="東京の天気です")

    assert visible_len(bar) == 10
