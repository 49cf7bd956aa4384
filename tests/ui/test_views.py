import pytest

from torrent_console.engine.types import JobState
from torrent_console.ui.formatting import strip_ansi, visible_len
from torrent_console.ui.views import (
    JOB_FILTERS,
    DisplayFlags,
    SessionStatsView,
    TorrentListView,
)


@pytest.fixture
def view():
    v = TorrentListView()
    v.set_size(120, 10)
    return v


@pytest.mark.unit
def test_snapshot_replaces_jobs_wholesale(view, make_status):
    view.update_jobs([make_status("a"), make_status("b")])
    view.update_jobs([make_status("a")])

    assert [st.job_id for st in view.jobs] == ["a"]


@pytest.mark.unit
def test_same_snapshot_twice_is_idempotent(view, make_status):
    snapshot = [make_status("a"), make_status("b"), make_status("c")]
    view.update_jobs(snapshot)
    view.arrow_down()
    before = (view.jobs, view.cursor(), view.active_job())

    view.update_jobs(snapshot)

    assert (view.jobs, view.cursor(), view.active_job()) == before


@pytest.mark.unit
def test_cursor_follows_selected_job(view, make_status):
    view.update_jobs([make_status("a", queue_position=0), make_status("b", queue_position=1),
                      make_status("c", queue_position=2)])
    view.arrow_down()
    view.arrow_down()
    assert view.active_job().job_id == "c"

    # "a" finished and left the queue; "c" is still selected
    view.update_jobs([make_status("b", queue_position=0), make_status("c", queue_position=1)])
    assert view.active_job().job_id == "c"
    assert view.cursor() == 1


@pytest.mark.unit
def test_cursor_clamped_when_selected_job_disappears(view, make_status):
    view.update_jobs([make_status("a"), make_status("b")])
    view.arrow_down()
    view.update_jobs([make_status("a")])

    assert view.cursor() == 0
    assert view.active_job().job_id == "a"


@pytest.mark.unit
def test_arrows_stop_at_edges(view, make_status):
    view.update_jobs([make_status("a"), make_status("b")])
    view.arrow_up()
    assert view.cursor() == 0
    view.arrow_down()
    view.arrow_down()
    assert view.cursor() == 1


@pytest.mark.unit
def test_filter_bounds_with_four_filters(make_status):
    view = TorrentListView(filters=JOB_FILTERS[:4])
    assert view.max_filter == 4

    assert view.filter_next() is True
    assert view.filter() == 1
    view.set_filter(3)
    assert view.filter_next() is False
    assert view.filter() == 3
    view.set_filter(0)
    assert view.filter_prev() is False
    assert view.filter() == 0

    with pytest.raises(IndexError):
        view.set_filter(4)


@pytest.mark.unit
def test_filters_select_jobs(view, make_status):
    view.update_jobs([
        make_status("dl"),
        make_status("seed", state=JobState.SEEDING),
        make_status("queued", paused=True),
        make_status("stopped", paused=True, auto_managed=False),
        make_status("check", state=JobState.CHECKING_FILES),
    ])
    labels = [label for label, _ in view.filters]

    def ids(label):
        view.set_filter(labels.index(label))
        return sorted(st.job_id for st in view.visible_jobs())

    assert ids("all") == ["check", "dl", "queued", "seed", "stopped"]
    assert ids("downloading") == ["dl"]
    assert ids("seeding") == ["seed"]
    assert ids("queued") == ["queued"]
    assert ids("stopped") == ["stopped"]
    assert ids("checking") == ["check"]


@pytest.mark.unit
def test_active_job_none_when_filter_empty(view, make_status):
    view.update_jobs([make_status("a")])
    view.set_filter(3)  # seeding
    assert view.active_job() is None


@pytest.mark.unit
def test_render_fits_height(view, make_status):
    view.update_jobs([make_status(f"{i:02d}") for i in range(30)])

    rows = view.render()

    assert len(rows) == view.height()
    assert strip_ansi(rows[0]).startswith("[all]")


@pytest.mark.unit
def test_render_wide_names_fit_width(view, make_status):
    view.update_jobs([make_status("aa", name="進撃の巨人" * 10)])

    rows = view.render()

    assert visible_len(rows[1]) <= 120
    assert "進撃の巨人" in strip_ansi(rows[1])


@pytest.mark.unit
def test_render_scrolls_to_cursor(view, make_status):
    view.update_jobs([make_status(f"{i:02d}", name=f"job {i:02d}") for i in range(30)])
    for _ in range(15):
        view.arrow_down()

    text = strip_ansi("\n".join(view.render()))

    assert "job 15" in text
    assert "job 00" not in text


@pytest.mark.unit
def test_display_flags_toggle():
    flags = DisplayFlags()
    assert flags.toggle("peers") is True
    assert flags.peers is True
    assert flags.toggle("peers") is False

    with pytest.raises(KeyError):
        flags.toggle("no_such_section")


@pytest.mark.unit
def test_session_stats_rates():
    stats = SessionStatsView()
    stats.update_counters({"net.recv_bytes": 1000}, 10.0)
    assert stats.rate("net.recv_bytes") == 0.0

    stats.update_counters({"net.recv_bytes": 5000}, 12.0)
    assert stats.rate("net.recv_bytes") == 2000.0
    assert stats.value("net.recv_bytes") == 5000


@pytest.mark.unit
def test_session_stats_optional_rows():
    stats = SessionStatsView()
    flags = DisplayFlags(utp_stats=True, disk_stats=True)

    rows = stats.render(flags)

    assert len(rows) == 3
    assert strip_ansi(rows[1]).startswith("uTP idle:")
    assert strip_ansi(rows[2]).startswith("disk queued jobs:")
