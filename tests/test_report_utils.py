"""Unit tests for cloud_deploy/report_utils.py"""

import json
import os
import re
import tempfile

from cloud_deploy.report_utils import (
    add_timestamp_to_path,
    render_distribution_table,
    save_json,
    save_table_and_json,
)


class TestSaveJson:
    """Tests for save_json function"""

    def test_save_report(self):
        """Test saving a distribution report"""
        with tempfile.TemporaryDirectory() as tmpdir:
            file_path = os.path.join(tmpdir, "report.json")
            data = {
                "source": "myapp:1.0",
                "image_uris": {"myregistry.azurecr.io": "myregistry.azurecr.io/myapp:1.0"},
                "status": "success",
            }

            returned = save_json(file_path, data)

            assert returned == file_path
            with open(file_path, 'r') as f:
                loaded = json.load(f)
            assert loaded == data

    def test_save_list(self):
        """Test saving a list"""
        with tempfile.TemporaryDirectory() as tmpdir:
            file_path = os.path.join(tmpdir, "test.json")
            save_json(file_path, [1, 2, {"nested": "value"}])

            with open(file_path, 'r') as f:
                assert json.load(f) == [1, 2, {"nested": "value"}]

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            file_path = os.path.join(tmpdir, "reports", "nested", "report.json")
            save_json(file_path, {"status": "dry-run"})
            assert os.path.exists(file_path)

    def test_secrets_are_redacted(self):
        """Test that credential fields never reach disk"""
        with tempfile.TemporaryDirectory() as tmpdir:
            file_path = os.path.join(tmpdir, "report.json")
            save_json(file_path, {"aws": {"secret_access_key": "s3cr3t"}, "error": "login failed password=hunter2"})

            with open(file_path, 'r') as f:
                content = f.read()
            assert "s3cr3t" not in content
            assert "hunter2" not in content

    def test_image_uris_are_written_unchanged(self):
        """Test that a repository named monkey keeps its tag in the report"""
        registry = "123456789012.dkr.ecr.us-east-1.amazonaws.com"
        image_uris = {registry: f"{registry}/monkey:latest", "reg.example.com": "reg.example.com/oauth:v2"}
        with tempfile.TemporaryDirectory() as tmpdir:
            file_path = os.path.join(tmpdir, "report.json")
            save_json(file_path, {"image_uris": image_uris, "error": "token=abc123"})

            with open(file_path, 'r') as f:
                loaded = json.load(f)
            assert loaded["image_uris"] == image_uris
            assert "abc123" not in loaded["error"]

    def test_timestamped_filename(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            saved = save_json(os.path.join(tmpdir, "report.json"), {"status": "success"}, timestamp=True)
            assert re.search(r"report-\d{4}-\d{2}-\d{2}-\d{2}-\d{2}-\d{2}\.json$", saved)
            assert os.path.exists(saved)


class TestAddTimestampToPath:
    """Tests for add_timestamp_to_path"""

    def test_inserts_before_extension(self):
        result = add_timestamp_to_path("reports/distribution.json", "2026-01-15-14-30-00")
        assert result == os.path.join("reports", "distribution-2026-01-15-14-30-00.json")


class TestDistributionTable:
    """Tests for render_distribution_table and save_table_and_json"""

    def test_lists_pushed_images(self):
        table = render_distribution_table(
            {"image_uris": {"123456789012.dkr.ecr.us-east-1.amazonaws.com": "123456789012.dkr.ecr.us-east-1.amazonaws.com/myapp:1.0"}}
        )
        assert "Registry" in table
        assert "123456789012.dkr.ecr.us-east-1.amazonaws.com/myapp:1.0" in table

    def test_dry_run_lists_targets(self):
        table = render_distribution_table(
            {"image_uris": {}, "targets": [{"provider": "gcp", "region": "us-central1", "repository": "myrepo"}]}
        )
        assert "(gcp) us-central1/myrepo" in table

    def test_save_table_and_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            base = os.path.join(tmpdir, "distribution")
            json_path = save_table_and_json(base, "table", {"status": "success"}, timestamp=False)

            assert json_path == f"{base}.json"
            with open(f"{base}.txt", 'r') as f:
                assert f.read() == "table"
