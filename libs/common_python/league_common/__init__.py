"""Shared helpers used by the league API service and the batch jobs.

- `league_common.logging`: process-wide logging setup and request correlation.
- `league_common.db`: concurrency error detection and retry/backoff for writes.
"""
