"""SQLite persistence for ingestion jobs and the organization corpus.

Both stores share one database file (``DATABASE_PATH``, default
data/trainkb.db).  SQLiteJobStore holds jobs, chunks and fragments;
SQLiteCorpusStore holds the generated training corpus.
"""

from trainkb.providers.store.sqlite_corpus_store import SQLiteCorpusStore
from trainkb.providers.store.sqlite_job_store import SQLiteJobStore

__all__ = ["SQLiteCorpusStore", "SQLiteJobStore"]
