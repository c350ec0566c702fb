#!/usr/bin/env python3
"""
Tests for TranscriptExtractor against a mocked player endpoint and caption
payload endpoint (httpx.MockTransport).
"""

import asyncio
import json
import os
import sys
import unittest

import httpx

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from page_context import API_KEY_NAME, PageConfigProvider
from transcript_config import TranscriptConfig
from transcript_errors import (
    CaptionsUnavailable,
    ConfigurationUnavailable,
    FetchTimeout,
    ParseFailure,
    UpstreamUnavailable,
    VideoIdUnavailable,
)
from transcript_extractor import TranscriptExtractor, _mask_url_for_logging, select_track
from transcript_models import CaptionTrack


WATCH_URL = "https://www.youtube.com/watch?v=abcdefghijk"
API_KEY = "AIzaTestKey123"

ASR_TRACK_URL = "https://www.youtube.com/api/timedtext?v=abcdefghijk&lang=en&kind=asr"
MANUAL_TRACK_URL = "/api/timedtext?v=abcdefghijk&lang=en&name=English"

TAGGED_BODY = '<p t="1000">Hello</p><p t="2500">World &amp; friends</p>'


def player_response(tracks):
    return {
        "playabilityStatus": {"status": "OK"},
        "captions": {"playerCaptionsTracklistRenderer": {"captionTracks": tracks}},
    }


DEFAULT_TRACKS = [
    {"baseUrl": ASR_TRACK_URL, "languageCode": "en", "kind": "asr", "name": {"simpleText": "English (auto-generated)"}},
    {"baseUrl": MANUAL_TRACK_URL, "languageCode": "en", "name": {"simpleText": "English"}},
]


class FakeUpstream:
    """Records requests and answers player and caption requests."""

    def __init__(self, tracks=None, player_status=200, payload=TAGGED_BODY, payload_status=200):
        self.tracks = DEFAULT_TRACKS if tracks is None else tracks
        self.player_status = player_status
        self.payload = payload
        self.payload_status = payload_status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/youtubei/v1/player":
            return httpx.Response(self.player_status, json=player_response(self.tracks))
        if request.url.path == "/api/timedtext":
            return httpx.Response(self.payload_status, text=self.payload)
        return httpx.Response(404)


def run_extractor(handler, config=None, api_key=API_KEY, location=WATCH_URL, method="get_transcript"):
    async def runner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), cookies={"SID": "session"}) as client:
            extractor = TranscriptExtractor(
                PageConfigProvider({API_KEY_NAME: api_key} if api_key else {}),
                lambda: location,
                client=client,
                config=config or TranscriptConfig(),
            )
            return await getattr(extractor, method)()

    return asyncio.run(runner())


class TestSelectTrack(unittest.TestCase):

    def test_prefers_first_human_track(self):
        tracks = [
            CaptionTrack("en", "a", kind="asr"),
            CaptionTrack("de", "b"),
            CaptionTrack("en", "c"),
        ]
        self.assertEqual(select_track(tracks).base_url, "b")

    def test_falls_back_to_first_track(self):
        tracks = [CaptionTrack("en", "a", kind="asr"), CaptionTrack("fr", "b", kind="asr")]
        self.assertEqual(select_track(tracks).base_url, "a")


class TestGetTranscript(unittest.TestCase):

    def test_successful_extraction(self):
        upstream = FakeUpstream()
        transcript = run_extractor(upstream)
        self.assertEqual(transcript, "[00:01] Hello\n[00:02] World & friends")

    def test_player_request_uses_android_identity(self):
        upstream = FakeUpstream()
        run_extractor(upstream)

        player = upstream.requests[0]
        self.assertEqual(player.method, "POST")
        self.assertEqual(player.url.params["key"], API_KEY)

        body = json.loads(player.content)
        self.assertEqual(body["videoId"], "abcdefghijk")
        client = body["context"]["client"]
        self.assertEqual(client["clientName"], "ANDROID")
        self.assertEqual(client["clientVersion"], "19.09.37")
        self.assertEqual(client["androidSdkVersion"], 30)
        self.assertEqual((client["hl"], client["gl"]), ("en", "US"))

    def test_manual_track_fetched_and_relative_url_resolved(self):
        upstream = FakeUpstream()
        run_extractor(upstream)

        payload_request = upstream.requests[1]
        self.assertEqual(payload_request.method, "GET")
        self.assertEqual(payload_request.url.host, "www.youtube.com")
        self.assertEqual(payload_request.url.params["name"], "English")
        self.assertNotIn("fmt", payload_request.url.params)

    def test_session_cookies_sent_on_both_requests(self):
        upstream = FakeUpstream()
        run_extractor(upstream)

        self.assertEqual(len(upstream.requests), 2)
        for request in upstream.requests:
            self.assertIn("SID=session", request.headers.get("cookie", ""))

    def test_json3_format_requested_explicitly(self):
        body = json.dumps({"events": [{"tStartMs": 61000, "segs": [{"utf8": "json "}, {"utf8": "line"}]}]})
        upstream = FakeUpstream(payload=body)

        transcript = run_extractor(upstream, config=TranscriptConfig(payload_format="json3"))

        self.assertEqual(transcript, "[01:01] json line")
        self.assertEqual(upstream.requests[1].url.params["fmt"], "json3")


class TestFailureClassification(unittest.TestCase):

    def test_missing_api_key(self):
        upstream = FakeUpstream()
        with self.assertRaises(ConfigurationUnavailable) as ctx:
            run_extractor(upstream, api_key=None)
        self.assertEqual(str(ctx.exception), "Could not find API key")
        self.assertEqual(upstream.requests, [])

    def test_missing_video_id(self):
        upstream = FakeUpstream()
        with self.assertRaises(VideoIdUnavailable) as ctx:
            run_extractor(upstream, location="https://www.youtube.com/watch?list=PL123")
        self.assertEqual(str(ctx.exception), "No video ID found")
        self.assertEqual(upstream.requests, [])

    def test_player_error_status(self):
        with self.assertRaises(UpstreamUnavailable) as ctx:
            run_extractor(FakeUpstream(player_status=403))
        self.assertEqual(str(ctx.exception), "Player API failed: 403")
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.stage, "catalog")

    def test_malformed_player_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>not json</html>")

        with self.assertRaises(UpstreamUnavailable):
            run_extractor(handler)

    def test_empty_catalog(self):
        with self.assertRaises(CaptionsUnavailable) as ctx:
            run_extractor(FakeUpstream(tracks=[]))
        self.assertEqual(str(ctx.exception), "No transcript available")

    def test_catalog_without_captions_block(self):
        def handler(request):
            return httpx.Response(200, json={"playabilityStatus": {"status": "OK"}})

        with self.assertRaises(CaptionsUnavailable):
            run_extractor(handler)

    def test_payload_error_status(self):
        with self.assertRaises(UpstreamUnavailable) as ctx:
            run_extractor(FakeUpstream(payload_status=404, payload="gone"))
        self.assertEqual(str(ctx.exception), "Failed to fetch transcript: 404")
        self.assertEqual(ctx.exception.stage, "payload")

    def test_empty_payload_body(self):
        with self.assertRaises(UpstreamUnavailable) as ctx:
            run_extractor(FakeUpstream(payload=""))
        self.assertEqual(str(ctx.exception), "Empty transcript response")

    def test_unparsable_payload(self):
        with self.assertRaises(ParseFailure):
            run_extractor(FakeUpstream(payload="WEBVTT\n\n00:00.000 --> 00:01.000\nhi"))

    def test_whitespace_payload(self):
        with self.assertRaises(ParseFailure):
            run_extractor(FakeUpstream(payload="   \n"))

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(UpstreamUnavailable) as ctx:
            run_extractor(handler)
        self.assertIsInstance(ctx.exception.__cause__, httpx.ConnectError)

    def test_slow_payload_times_out(self):
        upstream = FakeUpstream()

        async def handler(request):
            if request.url.path == "/api/timedtext":
                await asyncio.sleep(2)
            return upstream(request)

        with self.assertRaises(FetchTimeout) as ctx:
            run_extractor(handler, config=TranscriptConfig(payload_timeout=0.05))
        self.assertEqual(str(ctx.exception), "Transcript fetch timed out after 0.05s")


class TestFetchCaptionCatalog(unittest.TestCase):

    def test_tracks_without_url_are_dropped(self):
        tracks = [{"languageCode": "en"}, {"baseUrl": MANUAL_TRACK_URL, "languageCode": "de", "kind": ""}]

        async def runner():
            async with httpx.AsyncClient(transport=httpx.MockTransport(FakeUpstream(tracks=tracks))) as client:
                extractor = TranscriptExtractor(PageConfigProvider({}), lambda: WATCH_URL,
                                                client=client, config=TranscriptConfig())
                return await extractor.fetch_caption_catalog("abcdefghijk", api_key=API_KEY)

        catalog = asyncio.run(runner())
        self.assertEqual([t.language_code for t in catalog], ["de"])


class TestMaskUrlForLogging(unittest.TestCase):

    def test_masks_sensitive_params(self):
        masked = _mask_url_for_logging("https://www.youtube.com/api/timedtext?v=abc&signature=secret&key=k")
        self.assertIn("v=abc", masked)
        self.assertNotIn("secret", masked)
        self.assertIn("key=%2A%2A%2AMASKED%2A%2A%2A", masked)

    def test_url_without_query_unchanged(self):
        self.assertEqual(_mask_url_for_logging("https://www.youtube.com/watch"), "https://www.youtube.com/watch")


if __name__ == '__main__':
    unittest.main()
