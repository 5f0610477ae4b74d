import io
import os

import pytest

from scout_errors import FileTooLarge, NotFound, StorageError, UnsupportedFileType, ValidationError
from spray_charts import read_upload

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture()
def report(ctx):
    coach = ctx.store.create_user("coach@example.com", "hash")
    team = ctx.store.create_team("City Hawks", "Metro League", created_by=coach["id"])
    player = ctx.store.create_player("Mike Johnson", "SS", "12", team["id"])
    return ctx.store.create_report(player["id"], coach["id"], "2024-06-20", {}, "")


def _stored_files(ctx):
    return sorted(os.listdir(ctx.settings.upload_dir))


def test_upload_links_file_to_report(ctx, report):
    url = ctx.uploads.attach_spray_chart(report["id"], PNG, "image/png", "Chart.PNG")

    assert url.startswith("/uploads/spray-chart-")
    assert url.endswith(".png")
    assert ctx.store.get_report(report["id"])["sprayChartUrl"] == url
    with open(ctx.files.path_for_url(url), "rb") as f:
        assert f.read() == PNG


def test_non_image_is_rejected_without_storing(ctx, report):
    with pytest.raises(UnsupportedFileType):
        ctx.uploads.attach_spray_chart(report["id"], b"%PDF-1.4", "application/pdf", "chart.pdf")

    assert _stored_files(ctx) == []
    assert ctx.store.get_report(report["id"])["sprayChartUrl"] is None


def test_oversized_file_is_rejected(ctx, report):
    data = b"\x00" * (5 * 1024 * 1024 + 1)

    with pytest.raises(FileTooLarge):
        ctx.uploads.attach_spray_chart(report["id"], data, "image/png", "big.png")
    assert _stored_files(ctx) == []


def test_empty_file_is_rejected(ctx, report):
    with pytest.raises(ValidationError):
        ctx.uploads.attach_spray_chart(report["id"], b"", "image/png", "empty.png")


def test_unknown_report_leaves_no_file_behind(ctx):
    with pytest.raises(NotFound):
        ctx.uploads.attach_spray_chart("no-such-report", PNG, "image/png", "chart.png")

    assert _stored_files(ctx) == []


def test_failure_while_linking_removes_stored_file(ctx, report, monkeypatch):
    def broken(report_id, url):
        raise StorageError("disk went away")

    monkeypatch.setattr(ctx.store, "set_spray_chart", broken)

    with pytest.raises(StorageError):
        ctx.uploads.attach_spray_chart(report["id"], PNG, "image/png", "chart.png")
    assert _stored_files(ctx) == []


def test_replacing_a_chart_removes_the_old_file(ctx, report):
    first = ctx.uploads.attach_spray_chart(report["id"], PNG, "image/png", "one.png")
    second = ctx.uploads.attach_spray_chart(report["id"], PNG, "image/jpeg", "two.jpg")

    assert first != second
    assert not ctx.files.exists(first)
    assert ctx.files.exists(second)
    assert _stored_files(ctx) == [os.path.basename(second)]


def test_filenames_are_unique_and_sanitized(ctx):
    names = {ctx.files.new_filename("chart.png") for _ in range(20)}
    assert len(names) == 20

    odd = ctx.files.new_filename("../../etc/passwd.sh;rm -rf")
    assert "/" not in odd
    assert odd.startswith("spray-chart-")
    assert ctx.files.new_filename(None).startswith("spray-chart-")


def test_path_for_url_stays_inside_upload_dir(ctx):
    path = ctx.files.path_for_url("/uploads/../../secret.txt")
    assert os.path.dirname(path) == ctx.settings.upload_dir


def test_cleanup_ignores_missing_files(ctx, report):
    url = ctx.uploads.attach_spray_chart(report["id"], PNG, "image/png", "chart.png")

    assert ctx.uploads.cleanup([url, "/uploads/never-existed.png"]) == 1
    assert _stored_files(ctx) == []


def test_read_upload_stops_past_the_limit():
    with pytest.raises(FileTooLarge):
        read_upload(io.BytesIO(b"x" * 200_000), max_bytes=100_000)


def test_read_upload_returns_whole_body():
    data = b"y" * 150_000
    assert read_upload(io.BytesIO(data), max_bytes=200_000) == data
