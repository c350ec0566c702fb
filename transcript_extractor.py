"""
Transcript extraction through the player API with a substitute client identity.

Flow per request:
- read the API key from the page configuration;
- POST the player endpoint with the Android client context, so the caption
  URLs it returns are not gated by the web client's proof-of-origin token;
- pick one caption track (human-authored first);
- GET the track's payload with a bounded wait;
- parse and render it.

Every failure is raised as a classified ``TranscriptError``; there is no
retry and no fallback source.
"""

import asyncio
from typing import Callable, List, Optional
from urllib.parse import parse_qs, urlencode, urljoin, urlparse, urlunparse

import httpx

from caption_parser import parse_payload
from log_events import StageTimer, evt
from logging_setup import get_logger, set_request_ctx
from page_context import API_KEY_NAME, ConfigProvider, mask_secret, resolve_video_id
from transcript_config import TranscriptConfig, get_transcript_config
from transcript_errors import (
    CaptionsUnavailable,
    ConfigurationUnavailable,
    FetchTimeout,
    ParseFailure,
    UpstreamUnavailable,
    VideoIdUnavailable,
)
from transcript_format import render_transcript
from transcript_models import (
    ANDROID_CLIENT_IDENTITY,
    CaptionTrack,
    ClientIdentity,
    tracks_from_player_response,
)

logger = get_logger(__name__)


def _mask_url_for_logging(url: str) -> str:
    """Mask sensitive query parameters in URLs for logging."""
    try:
        parsed = urlparse(url)
        if not parsed.query:
            return url
        params = parse_qs(parsed.query, keep_blank_values=True)
        sensitive_params = {'key', 'token', 'auth', 'session', 'sig', 'signature', 'lsig'}
        masked_params = {
            key: ['***MASKED***'] * len(values) if key.lower() in sensitive_params else values
            for key, values in params.items()
        }
        return urlunparse(parsed._replace(query=urlencode(masked_params, doseq=True)))
    except ValueError:
        return f"{url.split('?')[0]}?***MASKED_QUERY***" if '?' in url else url


def select_track(tracks: List[CaptionTrack]) -> CaptionTrack:
    """
    Pick the first human-authored track, else the first track.

    Caller guarantees a non-empty list.
    """
    return next((t for t in tracks if not t.is_auto_generated), tracks[0])


class TranscriptExtractor:
    """
    Produces a rendered transcript for the video at the current location.

    Args:
        config_provider: Read access to the page configuration (API key)
        location_provider: Returns the current page location on each call
        client: Shared ``httpx.AsyncClient``; one is created when omitted
        config: Endpoint and timeout settings
        identity: Client identity sent instead of the page's own
        cookies: Session cookies for a client created here
    """

    def __init__(
        self,
        config_provider: ConfigProvider,
        location_provider: Callable[[], str],
        client: Optional[httpx.AsyncClient] = None,
        config: Optional[TranscriptConfig] = None,
        identity: ClientIdentity = ANDROID_CLIENT_IDENTITY,
        cookies: Optional[httpx.Cookies] = None,
    ):
        self.config_provider = config_provider
        self.location_provider = location_provider
        self.config = config or get_transcript_config()
        self.identity = identity
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            cookies=cookies,
            headers={
                "User-Agent": self.config.user_agent,
                "Accept-Language": "en-US,en;q=0.9",
            },
            follow_redirects=True,
        )

    async def __aenter__(self) -> 'TranscriptExtractor':
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # --- Page coupling ---

    def resolve_identity(self) -> str:
        """Return the internal API key from the page configuration."""
        api_key = self.config_provider.get(API_KEY_NAME)
        logger.debug(f"API key lookup: {mask_secret(api_key)}")
        if not api_key:
            raise ConfigurationUnavailable("Could not find API key")
        return api_key

    def resolve_content_identifier(self) -> str:
        """Read the current location and return its video id."""
        location = self.location_provider()
        video_id = resolve_video_id(location)
        if not video_id:
            raise VideoIdUnavailable("No video ID found")
        return video_id

    # --- Upstream calls ---

    async def fetch_caption_catalog(self, video_id: str, api_key: Optional[str] = None) -> List[CaptionTrack]:
        """
        Ask the player endpoint for the caption track catalog of ``video_id``.

        Raises:
            UpstreamUnavailable: transport error, non-success status or bad JSON
            CaptionsUnavailable: the catalog lists no usable tracks
        """
        api_key = api_key or self.resolve_identity()
        payload = {
            "context": self.identity.to_context(),
            "videoId": video_id,
        }

        try:
            response = await self._client.post(
                self.config.player_url,
                params={"key": api_key},
                json=payload,
                timeout=self.config.catalog_timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable("Player API timed out", stage="catalog") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Player API request failed: {type(e).__name__}", stage="catalog") from e

        evt("catalog_response", status_code=response.status_code, bytes=len(response.content))
        if not response.is_success:
            raise UpstreamUnavailable(
                f"Player API failed: {response.status_code}",
                status_code=response.status_code,
                stage="catalog",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailable(
                "Player API returned malformed JSON",
                status_code=response.status_code,
                stage="catalog",
            ) from e
        if not isinstance(data, dict):
            raise UpstreamUnavailable(
                "Player API returned an unexpected response shape",
                status_code=response.status_code,
                stage="catalog",
            )

        tracks = [t for t in tracks_from_player_response(data) if t.base_url]
        evt("catalog_fetched",
            track_count=len(tracks),
            tracks=", ".join(t.describe() for t in tracks),
            playability=(data.get("playabilityStatus") or {}).get("status"))

        if not tracks:
            raise CaptionsUnavailable("No transcript available")
        return tracks

    def _payload_url(self, track: CaptionTrack) -> str:
        url = urljoin(self.config.base_url, track.base_url)
        if self.config.payload_format:
            url = str(httpx.URL(url).copy_set_param("fmt", self.config.payload_format))
        return url

    async def fetch_raw_payload(self, track: CaptionTrack) -> str:
        """
        Download a track's raw caption payload within ``payload_timeout``.

        An empty body counts as a failure even with a success status: that is
        how the proof-of-origin gate shows up.
        """
        url = self._payload_url(track)
        timeout = self.config.payload_timeout
        logger.debug(f"Fetching caption payload from {_mask_url_for_logging(url)}")

        try:
            response = await asyncio.wait_for(self._client.get(url, timeout=timeout), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise FetchTimeout(f"Transcript fetch timed out after {timeout:g}s", timeout=timeout) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Transcript request failed: {type(e).__name__}", stage="payload") from e

        body = response.text
        evt("payload_response",
            status_code=response.status_code,
            content_type=response.headers.get("content-type", "unknown"),
            bytes=len(body))

        if not response.is_success:
            raise UpstreamUnavailable(
                f"Failed to fetch transcript: {response.status_code}",
                status_code=response.status_code,
                stage="payload",
            )
        if len(body) == 0:
            raise UpstreamUnavailable(
                "Empty transcript response",
                status_code=response.status_code,
                stage="payload",
            )
        return body

    # --- Pipeline ---

    async def get_transcript(self) -> str:
        """Run the full pipeline and return the rendered transcript."""
        api_key = self.resolve_identity()
        video_id = self.resolve_content_identifier()
        set_request_ctx(video_id=video_id)

        with StageTimer("catalog"):
            tracks = await self.fetch_caption_catalog(video_id, api_key)

        track = select_track(tracks)
        evt("track_selected", language=track.language_code, kind=track.kind or "manual")

        with StageTimer("payload", language=track.language_code):
            raw = await self.fetch_raw_payload(track)

        with StageTimer("parse"):
            lines = parse_payload(raw)
            if not lines:
                raise ParseFailure("Failed to parse transcript: blank payload")

        transcript = render_transcript(lines)
        evt("transcript_ready", line_count=len(lines), length=len(transcript))
        return transcript
