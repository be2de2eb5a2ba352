"""Video ID extraction from share and CDN links."""
import re
from typing import List, Optional

from sorabatch import settings

# Share links: https://sora.chatgpt.com/p/<id>
SHARE_PATTERN = re.compile(r"/p/([A-Za-z0-9_-]+)")
# Direct CDN links: https://<host>/MP4/<id>.mp4
CDN_PATTERN = re.compile(r"/MP4/([A-Za-z0-9_-]+)\.mp4")

_SEPARATORS = re.compile(r"[\s,]+")


def extract_id(url) -> Optional[str]:
    """Return the video ID from a share or CDN URL, or None if neither matches."""
    if not isinstance(url, str) or not url:
        return None
    for pattern in (SHARE_PATTERN, CDN_PATTERN):
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def split_candidates(text: str) -> List[str]:
    """Split pasted or file input on newlines, commas and spaces."""
    if not text:
        return []
    return [part.strip() for part in _SEPARATORS.split(text) if part.strip()]


def build_resource_url(video_id: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.CDN_BASE_URL).rstrip("/")
    return f"{base}/{video_id}.mp4"


def output_filename(video_id: str) -> str:
    return f"Sora_{video_id}.mp4"
