"""Document scrapers.

Produce bounded fragments from:
- Documentation websites (managed crawl or direct fetch)
- GitHub repositories (README, docs trees, code comments)
- Local markdown, text and PDF files
"""
