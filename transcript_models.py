"""
Data types shared by the caption parser, the extractor and the formatter.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

# "kind" value marking machine-generated caption tracks
AUTO_GENERATED_KIND = "asr"


@dataclass(frozen=True)
class TranscriptLine:
    """One timestamped caption line; text is non-empty and single-line."""
    start_ms: int
    text: str


@dataclass(frozen=True)
class CaptionTrack:
    """One selectable caption variant listed by the player catalog."""
    language_code: str
    base_url: str
    kind: str = ""
    name: Optional[str] = None

    @property
    def is_auto_generated(self) -> bool:
        return self.kind == AUTO_GENERATED_KIND

    def describe(self) -> str:
        """Short label used in logs, e.g. ``en (asr)`` or ``de (manual)``."""
        return f"{self.language_code} ({self.kind or 'manual'})"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'CaptionTrack':
        """Build a track from one ``captionTracks`` entry of the player response."""
        name = data.get("name") or {}
        if isinstance(name, dict):
            display_name = name.get("simpleText") or "".join(
                run.get("text", "") for run in name.get("runs") or [] if isinstance(run, dict)
            ) or None
        else:
            display_name = str(name) or None

        return cls(
            language_code=data.get("languageCode", ""),
            base_url=data.get("baseUrl", ""),
            kind=data.get("kind") or "",
            name=display_name,
        )


@dataclass(frozen=True)
class ClientIdentity:
    """Client metadata sent in the ``context`` of internal API calls."""
    client_name: str
    client_version: str
    android_sdk_version: Optional[int] = None
    hl: str = "en"
    gl: str = "US"

    def to_context(self) -> Dict[str, Any]:
        client = {
            "clientName": self.client_name,
            "clientVersion": self.client_version,
        }
        if self.android_sdk_version is not None:
            client["androidSdkVersion"] = self.android_sdk_version
        client["hl"] = self.hl
        client["gl"] = self.gl
        return {"client": client}


# The Android client is exempt from the proof-of-origin token that web-client
# caption URLs require; with the web identity the caption endpoint answers with
# an empty body. Pinned independently of the page's own client version.
ANDROID_CLIENT_IDENTITY = ClientIdentity(
    client_name="ANDROID",
    client_version="19.09.37",
    android_sdk_version=30,
    hl="en",
    gl="US",
)


def tracks_from_player_response(data: Dict[str, Any]) -> List[CaptionTrack]:
    """Extract the caption track catalog from a player API response."""
    captions = (data or {}).get("captions") or {}
    renderer = captions.get("playerCaptionsTracklistRenderer") or {}
    return [CaptionTrack.from_api(t) for t in renderer.get("captionTracks") or [] if isinstance(t, dict)]
