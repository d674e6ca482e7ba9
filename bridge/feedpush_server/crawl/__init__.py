"""
Crawl module - discovery of documents behind metadata-and-url feeds.
"""

from .web_parser import WebParser, acl_from_encoded_json, build_absolute_url, record_from_response

__all__ = ["WebParser", "acl_from_encoded_json", "build_absolute_url", "record_from_response"]
