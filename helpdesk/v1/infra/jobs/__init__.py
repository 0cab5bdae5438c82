"""
Background job pipeline.

At-least-once delivery through per-type pending/processing/failed lists,
exponential-backoff retries, a queryable dead-letter archive and one
idempotent handler per job type.
"""
