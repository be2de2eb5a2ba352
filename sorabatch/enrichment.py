"""Optional Gemini client that suggests short descriptive tags for video IDs."""
import json
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from sorabatch import settings
from sorabatch.logging_conf import logger

PROMPT_TEMPLATE = """
I have a list of Sora video IDs: {ids}.
Generate a short, 2-3 word descriptive tag or "theme" for each ID.
Since the IDs themselves are opaque, use your internal knowledge if you recognize these specific viral Sora IDs,
otherwise generate a creative "AI Concept" name for them.

Return the response as a valid JSON object where keys are the IDs and values are the descriptive tags.
Example: {{"s_123": "Cyberpunk Cityscape"}}
"""


class TagEnricher:
    """Asks Gemini for decorative tags. Every failure path returns None."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, session=None):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.base_url = "https://generativelanguage.googleapis.com/v1beta"
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def analyze(self, ids: List[str]) -> Optional[Dict[str, str]]:
        """
        Return a mapping of video ID to tag.

        Returns:
            Dict of tags, or None when no key is configured, the list is empty,
            or the request or its JSON payload fails
        """
        if not self.enabled or not ids:
            return None

        body = {
            "contents": [{"parts": [{"text": PROMPT_TEMPLATE.format(ids=", ".join(ids))}]}],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        try:
            response = self._request(f"/models/{self.model}:generateContent", body)
            if not response:
                return None
            tags = self._parse_tags(response)
            if tags is not None:
                logger.info(f"Received tags for {len(tags)} videos")
            return tags
        except Exception as e:
            logger.error(f"Gemini analysis error: {e}")
            return None

    def _parse_tags(self, response: Dict[str, Any]) -> Optional[Dict[str, str]]:
        candidates = response.get("candidates") or []
        if not candidates:
            logger.warning("Gemini returned no candidates")
            return None
        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts) or "{}"
        data = json.loads(text)
        if not isinstance(data, dict):
            logger.warning(f"Gemini returned {type(data).__name__}, expected an object")
            return None
        return {str(key): str(value) for key, value in data.items() if value}

    def _request(self, endpoint: str, body: Dict[str, Any], retry_count: int = 0) -> Optional[Dict[str, Any]]:
        """Make API request with retry logic."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.post(
                url, params={"key": self.api_key}, json=body, timeout=settings.REQUEST_TIMEOUT
            )

            if response.status_code == 429 and retry_count < 3:
                retry_after = int(response.headers.get("Retry-After", 2 ** retry_count))
                logger.warning(f"Gemini rate limited. Waiting {retry_after}s...")
                time.sleep(retry_after)
                return self._request(endpoint, body, retry_count + 1)

            if response.status_code >= 500 and retry_count < 3:
                wait_time = 2 ** retry_count
                logger.warning(f"Gemini server error {response.status_code}. Retrying in {wait_time}s...")
                time.sleep(wait_time)
                return self._request(endpoint, body, retry_count + 1)

            if response.status_code in (401, 403):
                logger.warning("Gemini API key rejected; skipping tags")
                return None

            response.raise_for_status()
            return response.json()

        except requests.exceptions.RequestException as e:
            if retry_count < 3 and isinstance(e, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
                wait_time = 2 ** retry_count
                time.sleep(wait_time)
                return self._request(endpoint, body, retry_count + 1)
            logger.error(f"Gemini API request failed: {e}")
            return None


def annotate_in_background(store, enricher: TagEnricher, ids: List[str]):
    """Tag queue items on a daemon thread. Returns the thread, or None if there is nothing to do."""
    if not enricher.enabled or not ids:
        return None

    def _annotate():
        try:
            tags = enricher.analyze(list(ids))
            if tags:
                applied = store.set_tags(tags)
                logger.info(f"Applied {applied} tags")
        except Exception as e:
            logger.warning(f"Tagging failed: {e}")

    thread = threading.Thread(target=_annotate, name="sorabatch-tagger", daemon=True)
    thread.start()
    return thread
