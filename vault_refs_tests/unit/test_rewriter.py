"""Tests for backing up files and substituting reference tokens."""

import os

import pytest

from vault_refs.exceptions import FileWriteError
from vault_refs.rewriter import Rewriter
from vault_refs.scanner import DetectedSecret

STORE_ROOT = "secret/windsurf-projects/myproj"


def detection_for(content, value, file_path, key, occurrence=0, vault_path="api_key"):
    """Build a detection for the n-th occurrence of ``value`` in ``content``."""
    start = -1
    for _ in range(occurrence + 1):
        start = content.index(value, start + 1)
    end = start + len(value)
    return DetectedSecret(
        type="api_key",
        key=key,
        value=value,
        file_path=str(file_path),
        line_number=content.count("\n", 0, start) + 1,
        match=value,
        span=(start, end),
        value_span=(start, end),
        vault_path=vault_path,
    )


@pytest.fixture
def rewriter(tmp_path):
    return Rewriter(tmp_path / ".windsurf" / "backups", STORE_ROOT)


class TestSubstitute:
    """Test in-memory substitution."""

    def test_replaces_only_detected_occurrence(self, rewriter):
        """Test a literal repeated elsewhere in the file is left alone."""
        content = "# example: abc123\nAPI_KEY=abc123\n"
        detection = detection_for(content, "abc123", "p/c/.env", "c__env_api", occurrence=1)

        updated, replaced, skipped = rewriter.substitute(content, [detection])

        assert updated == (
            "# example: abc123\n"
            "API_KEY={{vault:secret/windsurf-projects/myproj/api_key:c__env_api}}\n"
        )
        assert (replaced, skipped) == (1, 0)

    def test_multiple_detections_keep_offsets_valid(self, rewriter):
        """Test earlier replacements do not shift later ones."""
        content = "A_API_KEY=aaaaaa\nB_API_KEY=bbbbbb\n"
        detections = [
            detection_for(content, "aaaaaa", "p/c/.env", "c__env_a_api"),
            detection_for(content, "bbbbbb", "p/c/.env", "c__env_b_api"),
        ]

        updated, replaced, _ = rewriter.substitute(content, detections)

        assert replaced == 2
        assert "aaaaaa" not in updated and "bbbbbb" not in updated
        assert updated.splitlines()[1] == (
            "B_API_KEY={{vault:secret/windsurf-projects/myproj/api_key:c__env_b_api}}"
        )

    def test_overlapping_detection_is_skipped(self, rewriter):
        """Test a value already covered by another replacement is skipped."""
        content = "TOKEN=abcdef123456\n"
        outer = detection_for(content, "abcdef123456", "p/.env", "outer")
        inner = detection_for(content, "def123", "p/.env", "inner")

        updated, replaced, skipped = rewriter.substitute(content, [outer, inner])

        assert (replaced, skipped) == (1, 1)
        assert updated.count("{{vault:") == 1

    def test_stale_span_raises(self, rewriter):
        """Test content changed since the scan is refused."""
        content = "API_KEY=abc123\n"
        detection = detection_for(content, "abc123", "p/.env", "k")
        with pytest.raises(FileWriteError, match="changed since it was scanned"):
            rewriter.substitute("API_KEY=zzz999\n", [detection])


class TestRewrite:
    """Test rewriting files on disk."""

    def test_backup_is_byte_identical(self, rewriter, tmp_path):
        """Test the backup holds the exact original bytes."""
        path = tmp_path / ".env"
        original = b"API_KEY=abc123\r\nOTHER=1\r\n"
        path.write_bytes(original)
        detection = detection_for(original.decode(), "abc123", path, "k")

        result = rewriter.rewrite(path, [detection])

        assert result.replaced == 1
        assert open(result.backup_path, "rb").read() == original
        assert path.read_bytes() == (
            b"API_KEY={{vault:secret/windsurf-projects/myproj/api_key:k}}\r\nOTHER=1\r\n"
        )

    def test_stale_file_is_left_untouched(self, rewriter, tmp_path):
        """Test a failed substitution leaves the original file in place."""
        path = tmp_path / "app.json"
        path.write_text('{"API_KEY": "changed"}')
        detection = detection_for('{"API_KEY": "abc123"}', "abc123", path, "k")

        with pytest.raises(FileWriteError):
            rewriter.rewrite(path, [detection])
        assert path.read_text() == '{"API_KEY": "changed"}'

    def test_keeps_file_mode(self, rewriter, tmp_path):
        """Test the rewritten file keeps its permissions."""
        path = tmp_path / ".env"
        path.write_text("API_KEY=abc123\n")
        os.chmod(path, 0o600)
        rewriter.rewrite(path, [detection_for("API_KEY=abc123\n", "abc123", path, "k")])
        assert (path.stat().st_mode & 0o777) == 0o600

    def test_same_basename_gets_numbered_backup(self, rewriter, tmp_path):
        """Test a second file with the same name does not clobber the first backup."""
        first = tmp_path / "a" / ".env"
        second = tmp_path / "b" / ".env"
        for path, value in ((first, "aaaaaa"), (second, "bbbbbb")):
            path.parent.mkdir()
            path.write_text(f"API_KEY={value}\n")

        r1 = rewriter.rewrite(first, [detection_for("API_KEY=aaaaaa\n", "aaaaaa", first, "a")])
        r2 = rewriter.rewrite(second, [detection_for("API_KEY=bbbbbb\n", "bbbbbb", second, "b")])

        assert r1.backup_path.endswith(".env.bak")
        assert r2.backup_path.endswith(".env.1.bak")
        assert open(r1.backup_path).read() == "API_KEY=aaaaaa\n"
        assert open(r2.backup_path).read() == "API_KEY=bbbbbb\n"


class TestRestore:
    """Test restoring files from backups."""

    def test_restore_original(self, rewriter, tmp_path):
        """Test restore brings back the pre-rewrite content."""
        path = tmp_path / ".env"
        path.write_text("API_KEY=abc123\n")
        rewriter.rewrite(path, [detection_for("API_KEY=abc123\n", "abc123", path, "k")])
        assert "{{vault:" in path.read_text()

        rewriter.restore(path)

        assert path.read_text() == "API_KEY=abc123\n"

    def test_restore_without_backup_raises(self, rewriter, tmp_path):
        """Test restoring a file that was never backed up fails."""
        with pytest.raises(FileWriteError, match="No backup found"):
            rewriter.restore(tmp_path / "never.env")

    def test_restore_same_basename_uses_own_backup(self, rewriter, tmp_path):
        """Test restoring one of two same-named files never copies the other's backup."""
        first = tmp_path / "a" / ".env"
        second = tmp_path / "b" / ".env"
        for path, value in ((first, "aaaaaa"), (second, "bbbbbb")):
            path.parent.mkdir()
            path.write_text(f"API_KEY={value}\n")
        rewriter.rewrite(first, [detection_for("API_KEY=aaaaaa\n", "aaaaaa", first, "a")])
        rewriter.rewrite(second, [detection_for("API_KEY=bbbbbb\n", "bbbbbb", second, "b")])

        rewriter.restore(first)

        assert first.read_text() == "API_KEY=aaaaaa\n"
        assert "{{vault:" in second.read_text()

    def test_identical_content_backups_are_not_shared(self, rewriter, tmp_path):
        """Test a backup owned by another file is not reused even if bytes match."""
        first = tmp_path / "a" / ".env"
        second = tmp_path / "b" / ".env"
        for path in (first, second):
            path.parent.mkdir()
            path.write_text("API_KEY=abc123\n")

        r1 = rewriter.rewrite(first, [detection_for("API_KEY=abc123\n", "abc123", first, "k")])
        r2 = rewriter.rewrite(second, [detection_for("API_KEY=abc123\n", "abc123", second, "k")])

        assert r1.backup_path != r2.backup_path

    def test_untracked_backup_is_ignored(self, rewriter, tmp_path):
        """Test a stray .bak file without a manifest entry is never restored."""
        path = tmp_path / ".env"
        path.write_text("API_KEY={{vault:p:k}}\n")
        rewriter.backup_dir.mkdir(parents=True)
        (rewriter.backup_dir / ".env.bak").write_text("API_KEY=someone-else\n")

        with pytest.raises(FileWriteError, match="No backup found"):
            rewriter.restore(path)
        assert path.read_text() == "API_KEY={{vault:p:k}}\n"


class TestRewriteFailures:
    """Test that failures leave the original file untouched."""

    def test_failed_backup_aborts(self, tmp_path):
        """Test an unwritable backup location aborts before the file is touched."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        rewriter = Rewriter(blocker / "backups", STORE_ROOT)
        path = tmp_path / ".env"
        original = b"API_KEY=abc123\n"
        path.write_bytes(original)

        with pytest.raises(FileWriteError, match="Could not back up"):
            rewriter.rewrite(path, [detection_for(original.decode(), "abc123", path, "k")])
        assert path.read_bytes() == original

    def test_unencodable_store_path(self, tmp_path):
        """Test a store path that cannot form a token fails as a file error."""
        rewriter = Rewriter(tmp_path / "backups", "secret/windsurf-projects/my:proj")
        path = tmp_path / ".env"
        path.write_text("API_KEY=abc123\n")

        with pytest.raises(FileWriteError, match="Invalid store path"):
            rewriter.rewrite(path, [detection_for("API_KEY=abc123\n", "abc123", path, "k")])
        assert path.read_text() == "API_KEY=abc123\n"
