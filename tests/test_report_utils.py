"""Unit tests for utils/report_utils.py"""

import json
import os
import sys
import tempfile
from pathlib import Path

import pytest

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

from utils.artifact_record import ArtifactRecord
from utils.report_utils import (
    add_timestamp_to_path,
    format_discovery_table,
    get_artifact_report_paths,
    read_csv_records,
    read_ndjson_records,
    rebuild_csv,
    save_json,
    sizeof_fmt,
    write_artifact_reports,
)


@pytest.fixture
def records():
    return [
        ArtifactRecord(
            project="onboarding",
            repository="nagios",
            digest="sha256:aaa",
            push_time="2024-05-01T10:00:00.000Z",
            manifest_media_type="application/vnd.oci.image.index.v1+json",
            tags=("v1", "latest"),
            platforms=("linux/amd64", "linux/arm64"),
            size=2048,
        ),
        ArtifactRecord(
            project="onboarding",
            repository="team/app",
            digest="sha256:bbb",
            push_time="2024-04-01T10:00:00.000Z",
            manifest_media_type="application/vnd.docker.distribution.manifest.v2+json",
            tags=(),
            size=100,
        ),
        ArtifactRecord(
            project="onboarding",
            repository="quoted",
            digest="sha256:ccc",
            tags=('say "hi", ok',),
        ),
    ]


class TestReportPaths:
    def test_paths_named_after_project(self):
        ndjson_path, csv_path = get_artifact_report_paths("out", "onboarding")
        assert ndjson_path == Path("out") / "harbor_artifacts_onboarding.ndjson"
        assert csv_path == Path("out") / "harbor_artifacts_onboarding.csv"


class TestWriteArtifactReports:
    """Tests for the NDJSON -> CSV pipeline"""

    def test_ndjson_round_trip(self, records, tmp_path):
        ndjson_path, _ = write_artifact_reports(records, str(tmp_path), "onboarding")
        assert list(read_ndjson_records(ndjson_path)) == records

    def test_ndjson_is_one_compact_object_per_line(self, records, tmp_path):
        ndjson_path, _ = write_artifact_reports(records, str(tmp_path), "onboarding")
        lines = ndjson_path.read_text().splitlines()
        assert len(lines) == 3
        assert json.loads(lines[0])["tags"] == ["v1", "latest"]
        assert ", " not in lines[0]

    def test_csv_round_trip_of_migration_fields(self, records, tmp_path):
        _, csv_path = write_artifact_reports(records, str(tmp_path), "onboarding")

        parsed = read_csv_records(csv_path)

        for original, row in zip(records, parsed):
            assert (row.project, row.repository, row.digest, row.tags, row.platforms) == (
                original.project,
                original.repository,
                original.digest,
                original.tags,
                original.platforms,
            )

    def test_csv_header_and_quoting(self, records, tmp_path):
        _, csv_path = write_artifact_reports(records, str(tmp_path), "onboarding")
        lines = csv_path.read_text().split("\n")

        assert lines[0] == (
            '"project","repository","digest","push_time","manifest_media_type","tags","platforms","size"'
        )
        assert '"v1|latest"' in lines[1]
        assert '"linux/amd64|linux/arm64"' in lines[1]
        assert '""' in lines[2]
        assert '"say ""hi"", ok"' in lines[3]

    def test_rebuild_is_byte_identical(self, records, tmp_path):
        ndjson_path, csv_path = write_artifact_reports(records, str(tmp_path), "onboarding")
        first = csv_path.read_bytes()

        rebuild_csv(ndjson_path, csv_path)

        assert csv_path.read_bytes() == first

    def test_rewrite_truncates_previous_run(self, records, tmp_path):
        write_artifact_reports(records, str(tmp_path), "onboarding")
        ndjson_path, csv_path = write_artifact_reports(records[:1], str(tmp_path), "onboarding")

        assert len(ndjson_path.read_text().splitlines()) == 1
        assert len(read_csv_records(csv_path)) == 1

    def test_empty_record_set(self, tmp_path):
        ndjson_path, csv_path = write_artifact_reports([], str(tmp_path / "new"), "empty")
        assert ndjson_path.read_text() == ""
        assert read_csv_records(csv_path) == []


class TestReadReports:
    def test_blank_ndjson_lines_skipped(self, tmp_path):
        path = tmp_path / "r.ndjson"
        path.write_text('{"project":"p","repository":"a","digest":"sha256:1"}\n\n')
        assert [r.digest for r in read_ndjson_records(path)] == ["sha256:1"]

    def test_invalid_ndjson_line(self, tmp_path):
        path = tmp_path / "r.ndjson"
        path.write_text("not json\n")
        with pytest.raises(ValueError):
            list(read_ndjson_records(path))

    def test_csv_without_size_column(self, tmp_path):
        path = tmp_path / "old.csv"
        path.write_text(
            "project,repository,digest,push_time,manifest_media_type,tags,platforms\n"
            "p,app,sha256:1,,,v1|v2,\n"
        )
        records = read_csv_records(path)
        assert records[0].tags == ("v1", "v2")
        assert records[0].size == 0

    def test_csv_missing_required_column(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("repository,digest\napp,sha256:1\n")
        with pytest.raises(ValueError):
            read_csv_records(path)


class TestSaveJson:
    """Tests for save_json function"""

    def test_save_simple_dict(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            file_path = os.path.join(tmpdir, "test.json")
            data = {"key1": "value1", "key2": 42}

            save_json(file_path, data)

            with open(file_path, "r") as f:
                assert json.load(f) == data

    def test_creates_parent_directory(self, tmp_path):
        file_path = tmp_path / "nested" / "dir" / "report.json"
        save_json(str(file_path), {"a": 1})
        assert file_path.exists()

    def test_sets_become_sorted_lists(self, tmp_path):
        file_path = tmp_path / "report.json"
        save_json(str(file_path), {"tags": {"b", "a"}})
        assert json.loads(file_path.read_text()) == {"tags": ["a", "b"]}

    def test_timestamp_in_filename(self, tmp_path):
        saved = save_json(str(tmp_path / "report.json"), {}, timestamp=True)
        assert Path(saved).name.startswith("report-")
        assert Path(saved).suffix == ".json"


class TestFormatting:
    def test_sizeof_fmt(self):
        assert sizeof_fmt(512) == "512.0B"
        assert sizeof_fmt(2048) == "2.0KiB"

    def test_add_timestamp_to_path(self):
        assert add_timestamp_to_path("reports/x.json", "2026-01-01-00-00-00") == str(
            Path("reports") / "x-2026-01-01-00-00-00.json"
        )

    def test_discovery_table(self, records):
        table = format_discovery_table(records)
        assert "nagios" in table
        assert "team/app" in table
        assert "Multi-arch" in table
