"""Unit tests for built-in sources and source files."""

import json

import pytest

from docs_harvester.core.errors import ConfigurationError, ResourceNotFoundError
from docs_harvester.core.sources import default_sources, load_sources_file
from docs_harvester.pipelines.scraper.base import SourceType


class TestDefaultSources:
    def test_default_sources(self):
        sources = default_sources()

        assert len(sources) == 11
        assert len({s.name for s in sources}) == len(sources)
        assert all(s.enabled for s in sources)
        assert {s.type for s in sources} == {SourceType.WEBSITE, SourceType.REPOSITORY}

    def test_default_sources_are_fresh_copies(self):
        first = default_sources()
        first[0].enabled = False

        assert default_sources()[0].enabled is True


class TestLoadSourcesFile:
    def test_load_list(self, tmp_path):
        path = tmp_path / "sources.json"
        path.write_text(
            json.dumps(
                [
                    {"name": "Docs", "url": "https://docs.example.com", "type": "website"},
                    {"name": "Repo", "url": "https://github.com/a/b", "type": "github"},
                    {
                        "name": "Notes",
                        "url": "file:///tmp/notes.md",
                        "type": "file",
                        "filePath": "/tmp/notes.md",
                        "fileType": "markdown",
                        "enabled": False,
                    },
                ]
            )
        )

        sources = load_sources_file(path)

        assert [s.type for s in sources] == [SourceType.WEBSITE, SourceType.REPOSITORY, SourceType.FILE]
        assert sources[2].file_path == "/tmp/notes.md"
        assert sources[2].enabled is False

    def test_load_wrapped_list(self, tmp_path):
        path = tmp_path / "sources.json"
        path.write_text(json.dumps({"sources": [{"name": "D", "url": "https://d.example.com", "type": "website"}]}))

        assert [s.name for s in load_sources_file(str(path))] == ["D"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ResourceNotFoundError):
            load_sources_file(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "sources.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_sources_file(path)

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "sources.json"
        path.write_text(json.dumps({"sources": "nope"}))

        with pytest.raises(ConfigurationError):
            load_sources_file(path)

    def test_invalid_source(self, tmp_path):
        path = tmp_path / "sources.json"
        path.write_text(json.dumps([{"name": "Bad", "type": "ftp"}]))

        with pytest.raises(ConfigurationError):
            load_sources_file(path)
