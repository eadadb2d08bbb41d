"""Tests for sync metadata records."""

import tempfile
from pathlib import Path
from unittest.mock import patch

from feishu_export.core.metadata import METADATA_DIRNAME, MetadataStore, SyncRecord
from feishu_export.models.config import DocumentTarget


class TestSyncRecord:
    """Tests for SyncRecord serialization."""

    def test_to_text_and_back(self) -> None:
        record = SyncRecord(
            url="https://example.feishu.cn/docx/abc",
            name="Guide",
            output_file_name="Guide.md",
            fingerprint="42",
            synced_at="2026-01-31T12:00:00+00:00",
        )

        parsed = SyncRecord.from_text(record.to_text())

        assert parsed == record

    def test_unknown_keys_and_order_ignored(self) -> None:
        text = "Extra=1\nActualFileName=a.md\nURL=https://x/docx/a\nName=A\n"

        record = SyncRecord.from_text(text)

        assert record is not None
        assert record.url == "https://x/docx/a"
        assert record.output_file_name == "a.md"
        assert record.fingerprint == ""

    def test_value_may_contain_equals(self) -> None:
        record = SyncRecord.from_text("URL=https://x/base/a?table=t&view=v\nActualFileName=a.csv\n")

        assert record is not None
        assert record.url == "https://x/base/a?table=t&view=v"

    def test_incomplete_record(self) -> None:
        assert SyncRecord.from_text("Name=A\n") is None
        assert SyncRecord.from_text("") is None


class TestMetadataStore:
    """Tests for MetadataStore."""

    def test_compute_hash(self) -> None:
        hash1 = MetadataStore.compute_hash("Hello")
        hash2 = MetadataStore.compute_hash("Hello")

        assert hash1 == hash2
        assert len(hash1) == 64
        assert MetadataStore.compute_hash("World") != hash1

    def test_hash_file_nonexistent(self) -> None:
        assert MetadataStore.hash_file(Path("/nonexistent/file.csv")) is None

    def test_write_and_lookup(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = MetadataStore(Path(tmpdir))
            target = DocumentTarget(name="Guide", url="https://example.feishu.cn/docx/abc")

            written = store.write(target, "Guide.md", "7")
            record = MetadataStore(Path(tmpdir)).lookup("Guide")

            assert written is not None
            assert record is not None
            assert record.fingerprint == "7"
            assert record.output_file_name == "Guide.md"
            assert (Path(tmpdir) / METADATA_DIRNAME / "Guide.meta").exists()

    def test_last_write_wins(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = MetadataStore(Path(tmpdir))
            target = DocumentTarget(name="Guide", url="https://example.feishu.cn/docx/abc")

            store.write(target, "Guide.md", "1")
            store.write(target, "Guide.md", "2")

            assert store.lookup("Guide").fingerprint == "2"
            assert len(store.list_records()) == 1

    def test_name_is_sanitized(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = MetadataStore(Path(tmpdir))
            target = DocumentTarget(name="Q1/Q2: plan", url="https://example.feishu.cn/docx/abc")

            store.write(target, "plan.md", "3")

            assert store.record_path("Q1/Q2: plan").name == "Q1_Q2_ plan.meta"
            assert store.lookup("Q1/Q2: plan") is not None

    def test_lookup_missing(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = MetadataStore(Path(tmpdir))

            assert store.lookup("Nothing") is None
            assert store.lookup_by_url("https://x/docx/a") is None
            assert store.list_records() == []

    def test_corrupt_record_is_absent(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = MetadataStore(Path(tmpdir))
            store.metadata_dir.mkdir(parents=True)
            store.record_path("Broken").write_bytes(b"\xff\xfe\x00garbage")

            assert store.lookup("Broken") is None
            assert store.list_records() == []

    def test_lookup_by_url(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = MetadataStore(Path(tmpdir))
            store.write(DocumentTarget(name="A", url="https://x/base/a?table=t1"), "A_T1.csv", "")
            store.write(DocumentTarget(name="B", url="https://x/base/a?table=t2"), "A_T2.csv", "")

            record = store.lookup_by_url("https://x/base/a?table=t2")

            assert record is not None
            assert record.name == "B"

    def test_stale_records(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = MetadataStore(Path(tmpdir))
            store.write(DocumentTarget(name="A", url="https://x/docx/a"), "A.md", "1")
            store.write(DocumentTarget(name="B", url="https://x/docx/b"), "B.md", "1")

            stale = store.stale_records(["https://x/docx/a"])

            assert [r.name for r in stale] == ["B"]

    def test_output_exists(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = MetadataStore(Path(tmpdir))
            record = store.write(DocumentTarget(name="A", url="https://x/docx/a"), "A.md", "1")

            assert not store.output_exists(record)
            (Path(tmpdir) / "A.md").write_text("# A\n")
            assert store.output_exists(record)

    def test_write_failure_is_swallowed(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = MetadataStore(Path(tmpdir))
            target = DocumentTarget(name="A", url="https://x/docx/a")

            with patch("pathlib.Path.write_text", side_effect=OSError("disk full")):
                result = store.write(target, "A.md", "1")

            assert result is None
            assert store.lookup("A") is None
