"""Tests for manifest decoding and fetching."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from bgmpipeline.manifest import ManifestEntry, ManifestError, count_with_remote, fetch_manifest, parse_manifest


RAW_ENTRY = {
    "description": "Lith Harbor",
    "filename": "AboveTheTreetops",
    "mark": "Victoria",
    "metadata": {
        "albumArtist": "Wizet",
        "artist": "Wizet",
        "title": "Above the Treetops",
        "titleAlt": "",
        "year": "2003",
    },
    "source": {"client": "GMS", "date": "2003-04-29", "structure": "Bgm00", "version": "0.01"},
    "youtube": "dQw4w9WgXcQ",
}


class TestManifestEntry:
    def test_from_dict(self):
        entry = ManifestEntry.from_dict(RAW_ENTRY)
        assert entry.filename == "AboveTheTreetops"
        assert entry.source.structure == "Bgm00"
        assert entry.metadata.album_artist == "Wizet"
        assert entry.metadata.title_alt is None
        assert entry.youtube == "dQw4w9WgXcQ"

    def test_missing_optional_fields(self):
        entry = ManifestEntry.from_dict({"filename": "A", "source": {"structure": "Bgm01"}})
        assert entry.youtube == ""
        assert entry.metadata.artist == ""
        assert entry.source.client is None


class TestParseManifest:
    def test_drops_malformed_entries(self):
        data = [
            RAW_ENTRY,
            "not-an-object",
            {"filename": "NoSource"},
            {"source": {"structure": "Bgm00"}},
        ]
        entries = parse_manifest(data)
        assert [e.filename for e in entries] == ["AboveTheTreetops"]

    def test_rejects_non_array(self):
        with pytest.raises(ManifestError):
            parse_manifest({"entries": []})

    def test_count_with_remote(self):
        entries = parse_manifest([RAW_ENTRY, {**RAW_ENTRY, "filename": "B", "youtube": ""}])
        assert count_with_remote(entries) == 1


class TestFetchManifest:
    def test_fetch_uses_session_and_timeout(self):
        session = MagicMock()
        session.get.return_value.json.return_value = [RAW_ENTRY]

        entries = fetch_manifest("https://example.test/bgm.json", timeout=5.0, session=session)

        session.get.assert_called_once_with("https://example.test/bgm.json", timeout=5.0)
        assert len(entries) == 1

    def test_http_error_becomes_manifest_error(self):
        session = MagicMock()
        session.get.return_value.raise_for_status.side_effect = requests.HTTPError("404 Not Found")
        with pytest.raises(ManifestError, match="Failed to fetch"):
            fetch_manifest("https://example.test/bgm.json", session=session)

    def test_connection_error_becomes_manifest_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ManifestError):
            fetch_manifest("https://example.test/bgm.json", session=session)

    def test_bad_json_becomes_manifest_error(self):
        session = MagicMock()
        session.get.return_value.json.side_effect = ValueError("Expecting value")
        with pytest.raises(ManifestError, match="not valid JSON"):
            fetch_manifest("https://example.test/bgm.json", session=session)
