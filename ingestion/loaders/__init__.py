"""
Persistence: batched upserts, the PostgreSQL opportunity store and the
artifact store for bulk files and failure reports.
"""
