"""Command-line tools for trainkb.

``python -m trainkb.cli`` runs the ingestion CLI (:mod:`trainkb.cli.ingest`):
upload documents for an organization, parse them chunk by chunk and
optionally generate the training corpus, or inspect existing jobs.
"""
