from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

YOUTUBE_ID_RE = re.compile(r"^.*((youtu.be/)|(v/)|(/u/\w/)|(embed/)|(watch\?))\??v?=?([^#&?]*).*")


def extract_video_id(url: str) -> Optional[str]:
    match = YOUTUBE_ID_RE.match(url or "")
    if match and len(match.group(7)) == 11:
        return match.group(7)
    return None


class SummarizerError(Exception):
    pass


@dataclass
class SummaryResult:
    video_title: Optional[str]
    key_points: List[str] = field(default_factory=list)
    timestamps: List[dict] = field(default_factory=list)
    main_takeaways: List[str] = field(default_factory=list)


class SummarizerClient:
    """Client for the external summarization service."""

    def __init__(self, base_url: Optional[str], timeout: float = 60.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def summarize(
        self,
        youtube_url: str,
        summary_format: str,
        summary_length: str,
        user_id: Optional[str] = None,
    ) -> SummaryResult:
        if not self.is_configured:
            raise ValueError("Summarizer not configured. Set SUMMARIZER_URL.")

        payload = {
            "youtube_url": youtube_url,
            "summary_format": summary_format,
            "summary_length": summary_length,
            "user_id": user_id,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.base_url, json=payload)
        except httpx.HTTPError as e:
            raise SummarizerError(f"Summarizer request failed: {e}")

        if response.status_code != 200:
            raise SummarizerError(f"Summarizer returned {response.status_code}: {response.text}")

        try:
            data = response.json()
        except ValueError as e:
            raise SummarizerError(f"Summarizer returned invalid JSON: {e}")
        if not isinstance(data, dict):
            raise SummarizerError("Summarizer returned an unexpected payload")

        return SummaryResult(
            video_title=data.get("videoTitle"),
            key_points=list(data.get("keyPoints") or []),
            timestamps=list(data.get("timestamps") or []),
            main_takeaways=list(data.get("mainTakeaways") or []),
        )
