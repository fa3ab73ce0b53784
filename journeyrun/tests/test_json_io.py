"""Tests for graph import and run export."""

import json

import pytest

from journeyrun.errors import GraphIntegrityError
from journeyrun.models.records import JourneyStatus
from journeyrun.store.json_io import export_run_jsonl, import_journey_file, read_graph_file
from journeyrun.tracking.block_states import BlockStateTracker
from journeyrun.tracking.runs import RunTracker


def test_read_bare_and_wrapped_graph(tmp_path, remediation_data):
    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps(remediation_data), encoding="utf-8")
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"graph": remediation_data}), encoding="utf-8")

    assert read_graph_file(bare) == read_graph_file(wrapped)


def test_read_invalid_json(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("[1, 2", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid JSON"):
        read_graph_file(path)


def test_read_rejects_broken_graph(tmp_path, remediation_data):
    remediation_data["startBlockId"] = "nope"
    path = tmp_path / "g.json"
    path.write_text(json.dumps(remediation_data), encoding="utf-8")
    with pytest.raises(GraphIntegrityError):
        read_graph_file(path)


def test_import_journey_file(store, tmp_path, remediation_data):
    path = tmp_path / "loops.json"
    path.write_text(json.dumps(remediation_data), encoding="utf-8")

    record = import_journey_file(store, path, module_id="m1", status=JourneyStatus.PUBLISHED, version=3)

    assert record.journey_id == "loops"
    stored = store.get_journey("loops")
    assert stored.version == 3
    assert stored.status == JourneyStatus.PUBLISHED
    assert stored.graph.start_block_id == "A"


def test_export_run(store, clock, tmp_path):
    run = RunTracker(store, clock).load_or_create_active_run("u1", "j1", "A")
    tracker = BlockStateTracker(store, clock)
    tracker.load_or_create(run.id, "A")
    clock.advance(12)
    tracker.complete(run.id, "A", output={"answers": {"q1": 0}}, score=100)

    output = tmp_path / "run.jsonl"
    assert export_run_jsonl(store, run.id, output) == 2

    first, second = [json.loads(line) for line in output.read_text(encoding="utf-8").splitlines()]
    assert first["run"]["user_id"] == "u1"
    assert second["block_state"]["time_spent_seconds"] == 12
    assert second["block_state"]["output_payload"] == {"answers": {"q1": 0}}


def test_export_missing_run(store, tmp_path):
    with pytest.raises(ValueError, match="Run not found"):
        export_run_jsonl(store, "ghost", tmp_path / "x.jsonl")
