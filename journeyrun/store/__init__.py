"""Persistence for journeyrun."""

from journeyrun.store.sqlite_store import JourneyStore
from journeyrun.store.json_io import export_run_jsonl, import_journey_file, read_graph_file

__all__ = ["JourneyStore", "export_run_jsonl", "import_journey_file", "read_graph_file"]
