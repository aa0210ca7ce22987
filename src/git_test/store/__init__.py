"""Verdict persistence."""

from git_test.store.result_store import (
    ResultStore,
    parse_verdict_note,
    render_summary,
    render_verdict_note,
)

__all__ = ["ResultStore", "parse_verdict_note", "render_summary", "render_verdict_note"]
