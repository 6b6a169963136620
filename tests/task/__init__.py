"""Tests for the task package."""
