"""
File Intake Service
===================

Authenticated users upload files, administrators browse and download them,
and every upload and download lands in an append-only audit log:
- One CSV log per file owner, appended under a per-owner lock
- Decoded logs cached in memory until the next write for that owner
- Filtered, newest-first search across every owner's history
"""

__version__ = "1.0.0"
__author__ = "File Intake Team"
