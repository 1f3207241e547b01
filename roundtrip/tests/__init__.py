"""Tests for the Roundtrip test harness."""
