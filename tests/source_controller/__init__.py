"""Tests for the source controller package."""
