"""Tests for the git-source command line tool."""
