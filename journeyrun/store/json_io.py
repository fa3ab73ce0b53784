"""JSON import/export for journey graphs and runs.

Used to load authored journeys, and to dump a run for debugging or
sharing repros.
"""

import json
from pathlib import Path
from typing import TYPE_CHECKING

from journeyrun.models.graph import JourneyGraph, load_graph
from journeyrun.models.records import JourneyRecord, JourneyStatus

if TYPE_CHECKING:
    from journeyrun.store.sqlite_store import JourneyStore


def read_graph_file(input_path: str | Path) -> JourneyGraph:
    """Read and validate a journey graph from a JSON file.

    The file holds either the graph itself or ``{"graph": {...}}``.

    Raises:
        ValueError: If the file isn't valid JSON.
        GraphIntegrityError: If the graph is invalid.
    """
    input_path = Path(input_path)
    with open(input_path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {input_path}: {e}") from e

    if isinstance(data, dict) and "graph" in data and "blocks" not in data:
        data = data["graph"]
    return load_graph(data)


def import_journey_file(
    store: "JourneyStore",
    input_path: str | Path,
    journey_id: str | None = None,
    module_id: str | None = None,
    status: JourneyStatus = JourneyStatus.DRAFT,
    version: int = 1,
) -> JourneyRecord:
    """Load a graph file into the store as a journey version.

    Args:
        store: The store to write to.
        input_path: Path to the JSON graph.
        journey_id: Journey version id; defaults to the file stem.
        module_id: The module this journey belongs to, if any.
        status: Publication status.
        version: Version number.

    Returns:
        The stored journey record.
    """
    input_path = Path(input_path)
    graph = read_graph_file(input_path)
    record = JourneyRecord(
        journey_id=journey_id or input_path.stem,
        module_id=module_id,
        version=version,
        status=status,
        graph=graph,
    )
    return store.save_journey(record)


def export_run_jsonl(
    store: "JourneyStore",
    run_id: str,
    output_path: str | Path,
) -> int:
    """Export a run and its block states to a JSONL file.

    The first line is the run; each following line is one block state.

    Returns:
        Number of lines written.

    Raises:
        ValueError: If the run doesn't exist.
    """
    run = store.get_run(run_id)
    if run is None:
        raise ValueError(f"Run not found: {run_id}")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    states = store.list_block_states(run_id)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(json.dumps({"run": run.model_dump(mode="json")}, ensure_ascii=False) + "\n")
        for state in states:
            f.write(
                json.dumps({"block_state": state.model_dump(mode="json")}, ensure_ascii=False)
                + "\n"
            )

    return 1 + len(states)
