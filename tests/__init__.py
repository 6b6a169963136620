"""Tests for git-source."""
