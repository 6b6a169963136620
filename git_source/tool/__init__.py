"""Command line tool for git-source."""
