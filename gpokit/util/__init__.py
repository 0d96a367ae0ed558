"""
Utility functions and helpers.

This package contains reusable utilities for file operations, hashing,
retries, progress output, transcripts and value formatting.

Modules:
- files: Directory and file helpers
- filters: Include/exclude wildcard matching
- formatting: Byte sizes, random strings, time spans
- transcript: Per-run log files named after host and date
"""
