"""Tests for core orchestration logic."""
