"""Integration tests against real git repositories."""
