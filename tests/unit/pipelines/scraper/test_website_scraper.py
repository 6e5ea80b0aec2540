"""Tests for the website scraper."""

from unittest.mock import AsyncMock, patch

import pytest

from docs_harvester.core.errors import ConfigurationError, ErrorKind, ExternalApiError
from docs_harvester.pipelines.scraper.base import DocumentSource, SourceType
from docs_harvester.pipelines.scraper.website import WebsiteScraper

PAGE_HTML = """
<html>
<head><title>Cells | Example Docs</title><script>var tracking = true;</script></head>
<body>
  <nav>Home Docs Blog and other navigation links</nav>
  <article>
    <h1>Cell Model</h1>
    <p>A cell is the basic unit of state in the chain and holds capacity.</p>
    <p>Each cell has a lock script that decides who can spend it.</p>
  </article>
  <footer>Copyright footer text that should never be indexed</footer>
</body>
</html>
"""

CRAWL_API = "https://api.firecrawl.dev/v1"


def _page(url, title, body):
    return {"markdown": f"# {title}\n\n{body}", "metadata": {"sourceURL": url, "title": title}}


class FakeCrawlService:
    """Canned crawl job: start, one in-progress poll, then completion with a next page."""

    def __init__(self, start_response=None, polls=None, next_data=None):
        self.start_response = start_response or {"success": True, "id": "job-1"}
        self.polls = list(polls or [])
        self.next_data = next_data or []
        self.calls = []

    async def fetch(self, session, url, method="GET", headers=None, json_body=None, **kwargs):
        self.calls.append((method, url, headers, json_body))
        if method == "POST":
            if isinstance(self.start_response, Exception):
                raise self.start_response
            return self.start_response
        if "skip=" in url:
            return {"data": self.next_data}
        return self.polls.pop(0)


@pytest.fixture
def source():
    return DocumentSource(
        name="Example Docs",
        url="https://docs.example.com/cells",
        type=SourceType.WEBSITE,
        selector="article",
    )


class TestDirectFetch:
    """Test fetching and parsing a page without the crawl service."""

    @pytest.mark.asyncio
    async def test_direct_fetch_extracts_article(self, settings, source):
        scraper = WebsiteScraper(settings)

        with patch(
            "docs_harvester.pipelines.scraper.website.fetch_text",
            new_callable=AsyncMock,
            return_value=PAGE_HTML,
        ) as fetch_text:
            result = await scraper.fetch(source)

        assert result.success
        assert result.stats.total_pages == 1
        assert result.stats.total_chunks == 1
        chunk = result.chunks[0]
        assert chunk.title == "Cell Model"
        assert chunk.url == source.url
        assert "basic unit of state" in chunk.content
        assert "lock script" in chunk.content
        assert "navigation" not in chunk.content
        assert "Copyright" not in chunk.content
        assert chunk.metadata == {
            "scraper": "website",
            "page_url": source.url,
            "page_title": "Cell Model",
            "index": 0,
        }
        assert fetch_text.call_args.kwargs["max_redirects"] == 5

    @pytest.mark.asyncio
    async def test_alternative_selector_used_when_configured_one_is_empty(self, settings, source):
        scraper = WebsiteScraper(settings)
        source.selector = ".does-not-exist"

        with patch(
            "docs_harvester.pipelines.scraper.website.fetch_text",
            new_callable=AsyncMock,
            return_value=PAGE_HTML,
        ):
            result = await scraper.fetch(source)

        assert result.success
        assert "basic unit of state" in result.chunks[0].content
        assert "Copyright" not in result.chunks[0].content

    @pytest.mark.asyncio
    async def test_page_without_content_fails(self, settings, source):
        scraper = WebsiteScraper(settings)

        with patch(
            "docs_harvester.pipelines.scraper.website.fetch_text",
            new_callable=AsyncMock,
            return_value="<html><body><p>hi</p></body></html>",
        ):
            result = await scraper.fetch(source)

        assert not result.success
        assert result.error.kind == ErrorKind.PARSING_ERROR

    @pytest.mark.asyncio
    async def test_fragment_ceiling(self, settings, source):
        scraper = WebsiteScraper(
            settings,
            config={"max_chunks": 2, "batch_size": 1, "max_chunk_size": 100, "min_chunk_size": 30},
        )
        lines = "".join(
            f"<p>Line {i} describes another property of cells in enough detail.</p>" for i in range(12)
        )

        with patch(
            "docs_harvester.pipelines.scraper.website.fetch_text",
            new_callable=AsyncMock,
            return_value=f"<html><body><article>{lines}</article></body></html>",
        ):
            result = await scraper.fetch(source)

        assert result.success
        assert result.stats.total_chunks == 2
        assert len(result.chunks) == 2

    @pytest.mark.asyncio
    async def test_streams_to_sink(self, settings, source):
        scraper = WebsiteScraper(settings)
        received = []

        async def sink(chunks):
            received.extend(chunks)

        with patch(
            "docs_harvester.pipelines.scraper.website.fetch_text",
            new_callable=AsyncMock,
            return_value=PAGE_HTML,
        ):
            result = await scraper.fetch(source, on_chunks=sink)

        assert result.chunks == []
        assert result.stats.total_chunks == 1
        assert len(received) == 1


class TestManagedCrawl:
    """Test the crawl service path and its fallback."""

    @pytest.mark.asyncio
    async def test_crawl_processes_each_poll_and_next_page(self, settings, source):
        scraper = WebsiteScraper(settings, config={"api_key": "abc"})
        page_one = _page("https://docs.example.com/cells", "Cells", "A cell holds capacity, a lock and data.")
        page_two = _page("https://docs.example.com/tx", "Transactions", "Transactions consume and create cells.")
        page_three = _page("https://docs.example.com/scripts", "Scripts", "Scripts run inside the CKB-VM.")
        crawl = FakeCrawlService(
            polls=[
                {"status": "scraping", "data": [page_one]},
                {
                    "status": "completed",
                    "data": [page_one, page_two],
                    "next": f"{CRAWL_API}/crawl/job-1?skip=2",
                },
            ],
            next_data=[page_three],
        )

        with patch(
            "docs_harvester.pipelines.scraper.website.fetch_json", side_effect=crawl.fetch
        ), patch(
            "docs_harvester.pipelines.scraper.website.fetch_text", new_callable=AsyncMock
        ) as fetch_text:
            result = await scraper.fetch(source)

        assert result.success
        assert result.stats.total_pages == 3
        assert [c.title for c in result.chunks] == ["Cells", "Transactions", "Scripts"]
        assert result.chunks[1].url == "https://docs.example.com/tx"
        assert result.chunks[0].metadata["scraper"] == "crawl"
        fetch_text.assert_not_called()

        method, url, headers, payload = crawl.calls[0]
        assert (method, url) == ("POST", f"{CRAWL_API}/crawl")
        assert headers["Authorization"] == "Bearer fc-abc"
        assert payload["url"] == source.url
        assert payload["limit"] == settings.crawl_max_pages
        assert payload["scrapeOptions"]["formats"] == ["markdown"]

    @pytest.mark.asyncio
    async def test_crawl_start_failure_falls_back_to_direct(self, settings, source):
        scraper = WebsiteScraper(settings, config={"api_key": "fc-abc"})
        crawl = FakeCrawlService(start_response=ExternalApiError("payment required", status=402))

        with patch(
            "docs_harvester.pipelines.scraper.website.fetch_json", side_effect=crawl.fetch
        ), patch(
            "docs_harvester.pipelines.scraper.website.fetch_text",
            new_callable=AsyncMock,
            return_value=PAGE_HTML,
        ) as fetch_text:
            result = await scraper.fetch(source)

        assert result.success
        assert result.chunks[0].metadata["scraper"] == "website"
        fetch_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_job_without_id_falls_back_to_direct(self, settings, source):
        scraper = WebsiteScraper(settings, config={"api_key": "abc"})
        crawl = FakeCrawlService(start_response={"success": False, "error": "bad url"})

        with patch(
            "docs_harvester.pipelines.scraper.website.fetch_json", side_effect=crawl.fetch
        ), patch(
            "docs_harvester.pipelines.scraper.website.fetch_text",
            new_callable=AsyncMock,
            return_value=PAGE_HTML,
        ):
            result = await scraper.fetch(source)

        assert result.success
        assert result.stats.total_chunks == 1

    @pytest.mark.asyncio
    async def test_empty_crawl_falls_back_to_direct(self, settings, source):
        scraper = WebsiteScraper(settings, config={"api_key": "abc"})
        crawl = FakeCrawlService(polls=[{"status": "completed", "data": []}])

        with patch(
            "docs_harvester.pipelines.scraper.website.fetch_json", side_effect=crawl.fetch
        ), patch(
            "docs_harvester.pipelines.scraper.website.fetch_text",
            new_callable=AsyncMock,
            return_value=PAGE_HTML,
        ) as fetch_text:
            result = await scraper.fetch(source)

        assert result.success
        assert result.stats.total_chunks == 1
        fetch_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_job_stops_polling(self, settings, source):
        scraper = WebsiteScraper(settings, config={"api_key": "abc", "max_polls": 5})
        crawl = FakeCrawlService(
            polls=[{"status": "failed", "data": [_page(source.url, "Cells", "Partial page content here.")]}]
        )

        with patch("docs_harvester.pipelines.scraper.website.fetch_json", side_effect=crawl.fetch):
            result = await scraper.fetch(source)

        assert result.success
        assert result.stats.total_pages == 1
        assert len(crawl.calls) == 2

    def test_auth_headers(self, settings):
        assert WebsiteScraper(settings, config={"api_key": "fc-key"})._auth_headers()["Authorization"] == (
            "Bearer fc-key"
        )
        with pytest.raises(ConfigurationError):
            WebsiteScraper(settings)._auth_headers()


class TestPageFragments:
    def test_paragraph_cap(self, settings):
        scraper = WebsiteScraper(settings)
        text = "\n\n".join(f"Paragraph number {i} with enough words to be kept." for i in range(5))

        pieces = scraper.page_fragments(text, max_paragraphs=2)

        assert len(pieces) == 1
        assert "Paragraph number 1" in pieces[0]
        assert "Paragraph number 2" not in pieces[0]

    def test_short_paragraphs_dropped(self, settings):
        scraper = WebsiteScraper(settings)

        assert scraper.page_fragments("# Title\n\nshort") == []
