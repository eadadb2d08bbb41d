"""Tests for batch sync runs."""

import tempfile
from pathlib import Path

from feishu_export.core.metadata import MetadataStore
from feishu_export.core.orchestrator import SyncOrchestrator
from feishu_export.models.config import SyncConfig

from conftest import FakeClient


def add_table(client: FakeClient) -> None:
    client.apps["App1"] = {"name": "Roadmap"}
    client.tables["App1"] = [{"table_id": "tbl1", "name": "Tasks"}]
    client.fields[("App1", "tbl1")] = [{"field_id": "f1", "field_name": "Title", "type": 1}]
    client.record_pages[("App1", "tbl1")] = [[{"record_id": "rec1", "fields": {"Title": "Ship"}}]]


def make_config(output_dir: Path, mode: str = "clean_all") -> SyncConfig:
    config = SyncConfig()
    config.sync.output_dir = str(output_dir)
    config.sync.sync_mode = mode
    config.add_document("Guide", "https://example.feishu.cn/docx/Doc1", group="docs")
    config.add_document("Tasks", "https://example.feishu.cn/base/App1?table=tbl1", doc_type="csv")
    return config


class TestSyncOrchestrator:
    """Tests for SyncOrchestrator."""

    def test_run_writes_files_and_metadata(self, fake_client: FakeClient) -> None:
        fake_client.add_docx("Doc1", "Guide title", 7, ["Hello"])
        add_table(fake_client)

        with tempfile.TemporaryDirectory() as tmpdir:
            output_dir = Path(tmpdir) / "out"
            summary = SyncOrchestrator(make_config(output_dir), fake_client).run()

            doc_exists = (output_dir / "docs" / "Guide.md").exists()
            table_exists = (output_dir / "Roadmap_Tasks.csv").exists()
            doc_record = MetadataStore(output_dir / "docs").lookup("Guide")
            table_record = MetadataStore(output_dir).lookup("Tasks")

        assert summary.ok
        assert summary.total == 2
        assert summary.succeeded == 2
        assert doc_exists
        assert table_exists
        assert doc_record.fingerprint == "7"
        assert table_record.output_file_name == "Roadmap_Tasks.csv"
        assert len(table_record.fingerprint) == 64

    def test_clean_all_removes_old_files(self, fake_client: FakeClient) -> None:
        fake_client.add_docx("Doc1", "Guide title", 7, ["Hello"])
        add_table(fake_client)

        with tempfile.TemporaryDirectory() as tmpdir:
            output_dir = Path(tmpdir) / "out"
            output_dir.mkdir()
            (output_dir / "leftover.md").write_text("old")

            SyncOrchestrator(make_config(output_dir), fake_client).run()

            assert not (output_dir / "leftover.md").exists()

    def test_incremental_skips_unchanged(self, fake_client: FakeClient) -> None:
        fake_client.add_docx("Doc1", "Guide title", 7, ["Hello"])
        add_table(fake_client)

        with tempfile.TemporaryDirectory() as tmpdir:
            output_dir = Path(tmpdir) / "out"
            config = make_config(output_dir, mode="incremental")
            orchestrator = SyncOrchestrator(config, fake_client)

            first = orchestrator.run()
            second = orchestrator.run()
            fake_client.documents["Doc1"]["revision_id"] = 8
            third = orchestrator.run()

        assert first.succeeded == 2
        assert second.succeeded == 0
        assert second.skipped == 2
        assert third.succeeded == 1
        assert third.skipped == 1

    def test_force_resyncs_everything(self, fake_client: FakeClient) -> None:
        fake_client.add_docx("Doc1", "Guide title", 7, ["Hello"])
        add_table(fake_client)

        with tempfile.TemporaryDirectory() as tmpdir:
            output_dir = Path(tmpdir) / "out"
            orchestrator = SyncOrchestrator(make_config(output_dir, mode="incremental"), fake_client)

            orchestrator.run()
            forced = orchestrator.run(force=True)

        assert forced.succeeded == 2
        assert forced.skipped == 0

    def test_errors_are_collected(self, fake_client: FakeClient) -> None:
        add_table(fake_client)

        with tempfile.TemporaryDirectory() as tmpdir:
            output_dir = Path(tmpdir) / "out"
            summary = SyncOrchestrator(make_config(output_dir), fake_client).run()

        assert not summary.ok
        assert summary.succeeded == 1
        assert len(summary.errors) == 1
        assert summary.errors[0].startswith("Guide:")

    def test_group_filter(self, fake_client: FakeClient) -> None:
        fake_client.add_docx("Doc1", "Guide title", 7, ["Hello"])

        with tempfile.TemporaryDirectory() as tmpdir:
            output_dir = Path(tmpdir) / "out"
            summary = SyncOrchestrator(make_config(output_dir), fake_client).run(group="docs")

        assert summary.total == 1
        assert summary.ok

    def test_no_documents(self, fake_client: FakeClient) -> None:
        summary = SyncOrchestrator(SyncConfig(), fake_client).run()

        assert summary.total == 0
        assert summary.ok

    def test_refuses_to_clean_protected_dirs(self, fake_client: FakeClient) -> None:
        config = SyncConfig()
        orchestrator = SyncOrchestrator(config, fake_client)

        for output_dir in ("", ".", "/"):
            config.sync.output_dir = output_dir
            assert not orchestrator.clean_output_dir()
