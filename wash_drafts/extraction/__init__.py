"""Page extraction and image capture."""

from .extractor import HtmlExtractor, extract_article_content, fetch_page
from .images import HttpImageFetcher

__all__ = ["HtmlExtractor", "HttpImageFetcher", "extract_article_content", "fetch_page"]
