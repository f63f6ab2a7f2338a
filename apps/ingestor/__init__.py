"""
Ingestor App - Resumable Event Feed Ingestion

Responsibilities:
- Paginated pulls of the DataSync events feed (cursor + until bound)
- Failure classification: invalid cursor, transient bodies, 429/5xx, fatal
- Idempotent batch persistence into SQLite (ON CONFLICT DO NOTHING)
- Atomic page + progress commits for crash-safe resumption
- Self-pacing against the upstream rate-limit headers

Output:
- SQLite tables: ingested_events, ingestion_progress
"""
