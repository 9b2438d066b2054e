"""Allow ``python -m trainkb.cli``; dispatches to the ingestion CLI."""

from trainkb.cli.ingest import main

main()
