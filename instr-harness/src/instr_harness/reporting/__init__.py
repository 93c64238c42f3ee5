"""Run summaries."""

from __future__ import annotations

from instr_harness.reporting.summary import summary_to_dict, write_summary

__all__ = ["summary_to_dict", "write_summary"]
