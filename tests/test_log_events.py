"""
Unit tests for log_events.py event helper functions.

Tests the evt() function and StageTimer context manager for:
- Consistent event emission
- Duration accuracy
- Exception handling
- Error classification
"""

import unittest
import logging
import time
import json
from io import StringIO

# Add parent directory to path for imports
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Import the modules under test
import log_events
from logging_setup import JsonFormatter, clear_request_ctx, set_request_ctx
from transcript_errors import CaptionsUnavailable, FetchTimeout


class LogCaptureMixin:
    """Route root logger output through JsonFormatter into a buffer."""

    def setUp(self):
        self.log_buffer = StringIO()
        self.handler = logging.StreamHandler(self.log_buffer)
        self.handler.setFormatter(JsonFormatter())

        self.logger = logging.getLogger()
        self.saved_handlers = self.logger.handlers[:]
        self.saved_level = self.logger.level
        for handler in self.saved_handlers:
            self.logger.removeHandler(handler)
        self.logger.addHandler(self.handler)
        self.logger.setLevel(logging.INFO)
        clear_request_ctx()

    def tearDown(self):
        self.logger.removeHandler(self.handler)
        self.handler.close()
        for handler in self.saved_handlers:
            self.logger.addHandler(handler)
        self.logger.setLevel(self.saved_level)
        clear_request_ctx()

    def events(self):
        return [json.loads(line) for line in self.log_buffer.getvalue().splitlines() if line.strip()]


class TestEvtFunction(LogCaptureMixin, unittest.TestCase):
    """Test the evt() function for consistent event emission."""

    def test_evt_basic_event_emission(self):
        log_events.evt("catalog_fetched", track_count=2, tracks="en (asr), en (manual)")

        event = self.events()[0]
        self.assertEqual(event["event"], "catalog_fetched")
        self.assertEqual(event["track_count"], 2)
        self.assertEqual(event["lvl"], "INFO")

    def test_evt_picks_up_request_context(self):
        set_request_ctx(correlation_id="cid-7", video_id="abcdefghijk")
        log_events.evt("track_selected", language="en")

        event = self.events()[0]
        self.assertEqual(event["correlation_id"], "cid-7")
        self.assertEqual(event["video_id"], "abcdefghijk")

    def test_evt_with_no_additional_fields(self):
        log_events.evt("simple_event")
        self.assertEqual(self.events()[0]["event"], "simple_event")


class TestStageTimer(LogCaptureMixin, unittest.TestCase):
    """Test the StageTimer context manager."""

    def test_stage_timer_success_case(self):
        with log_events.StageTimer("payload", language="en"):
            time.sleep(0.01)

        start, result = self.events()
        self.assertEqual(start["event"], "stage_start")
        self.assertEqual(start["stage"], "payload")
        self.assertEqual(result["event"], "stage_result")
        self.assertEqual(result["outcome"], "success")
        self.assertEqual(result["language"], "en")
        self.assertGreaterEqual(result["dur_ms"], 5)
        self.assertLess(result["dur_ms"], 1000)

    def test_stage_timer_error_case(self):
        with self.assertRaises(CaptionsUnavailable):
            with log_events.StageTimer("catalog"):
                raise CaptionsUnavailable("No transcript available")

        result = self.events()[-1]
        self.assertEqual(result["outcome"], "error")
        self.assertEqual(result["error_type"], "captions_unavailable")
        self.assertEqual(result["detail"], "CaptionsUnavailable: No transcript available")


class TestRequestEvents(LogCaptureMixin, unittest.TestCase):

    def test_request_lifecycle_events(self):
        log_events.request_received("cid-1")
        log_events.request_finished("cid-1", outcome="success", duration_ms=42, length=120)

        received, finished = self.events()
        self.assertEqual(received["event"], "request_received")
        self.assertEqual(received["correlation_id"], "cid-1")
        self.assertEqual(finished["outcome"], "success")
        self.assertEqual(finished["dur_ms"], 42)
        self.assertEqual(finished["length"], 120)


class TestClassifyErrorType(unittest.TestCase):

    def test_classified_errors_use_reason(self):
        self.assertEqual(log_events.classify_error_type(FetchTimeout("slow")), "fetch_timeout")

    def test_generic_errors_bucketed_by_message(self):
        self.assertEqual(log_events.classify_error_type(OSError("Connection reset")), "network_error")
        self.assertEqual(log_events.classify_error_type(ValueError("JSON decode failed")), "decode_error")
        self.assertEqual(log_events.classify_error_type(RuntimeError("other")), "unexpected_error")
        self.assertEqual(log_events.classify_error_type(None), "unknown_error")


if __name__ == '__main__':
    unittest.main()
