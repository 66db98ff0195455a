"""
Video Source Resolver
Turn a job's (url, upload_id) pair into a VideoSource. Uploads resolve to a
local file; YouTube links resolve to metadata only.
"""
import logging
import os
from typing import Optional

import requests

from clipforge.core.enums import SourceType
from clipforge.core.errors import InputUnavailableError
from clipforge.schemas.source import VideoSource

logger = logging.getLogger(__name__)

OEMBED_URL = "https://www.youtube.com/oembed"


def fetch_youtube_metadata(url: str, timeout: float = 10) -> Optional[dict]:
    """oEmbed lookup. Returns None on any failure; metadata is best-effort."""
    try:
        resp = requests.get(OEMBED_URL, params={"url": url, "format": "json"}, timeout=timeout)
        if not resp.ok:
            return None
        return resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.debug(f"[video_source] oEmbed lookup failed for {url}: {e}")
        return None


class VideoSourceResolver:
    def __init__(self, uploads_dir: str, metadata_fetcher=fetch_youtube_metadata):
        self.uploads_dir = uploads_dir
        self.metadata_fetcher = metadata_fetcher

    def resolve(self, url: Optional[str] = None, upload_id: Optional[str] = None) -> VideoSource:
        if upload_id:
            file_path = os.path.join(self.uploads_dir, upload_id)
            if not os.path.isfile(file_path):
                raise InputUnavailableError("Uploaded file not found.")
            metadata = (self.metadata_fetcher(url) if url else None) or {}
            return VideoSource(
                type=SourceType.UPLOAD,
                file_path=file_path,
                url=url,
                title=metadata.get("title") or os.path.basename(upload_id),
                provider=metadata.get("provider_name"),
            )

        if url:
            metadata = self.metadata_fetcher(url) or {}
            return VideoSource(
                type=SourceType.YOUTUBE,
                url=url,
                title=metadata.get("title"),
                provider=metadata.get("provider_name") or "YouTube",
            )

        raise InputUnavailableError("Missing video source.")
