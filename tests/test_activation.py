import copy

import pytest

from activation import (
    SCHEDULE_TRIGGER_TYPE,
    build_update_payload,
    ensure_trigger_node,
    is_trigger_node,
    normalize_set_nodes,
    prepare_for_activation,
)


def fetched_workflow(**overrides):
    """A workflow as GET /workflows/{id} returns it (connections keyed by name)."""
    workflow = {
        "id": "wf-1",
        "name": "Fetched",
        "active": False,
        "createdAt": "2024-01-01T00:00:00.000Z",
        "updatedAt": "2024-01-01T00:00:00.000Z",
        "nodes": [
            {"id": "a1", "name": "HTTP", "type": "n8n-nodes-base.httpRequest", "position": [400, 300], "parameters": {}},
            {"id": "b2", "name": "Code", "type": "n8n-nodes-base.code", "position": [600, 250], "parameters": {}},
        ],
        "connections": {
            "HTTP": {"main": [[{"node": "Code", "type": "main", "index": 0}]]}
        },
        "settings": {"executionOrder": "v1"},
        "tags": []
    }
    workflow.update(overrides)
    return workflow


@pytest.mark.parametrize("node_type", [
    "n8n-nodes-base.manualTrigger",
    "n8n-nodes-base.webhook",
    "n8n-nodes-base.cron",
    "n8n-nodes-base.interval",
    "n8n-nodes-base.scheduleTrigger",
    "N8N-NODES-BASE.WEBHOOK",
])
def test_trigger_types_detected(node_type):
    assert is_trigger_node({"type": node_type})


def test_trigger_group_detected():
    assert is_trigger_node({"type": "custom.poller", "group": ["trigger"]})


@pytest.mark.parametrize("node", [
    {"type": "n8n-nodes-base.httpRequest"},
    {"type": "n8n-nodes-base.set", "group": ["input"]},
    {},
])
def test_non_trigger_nodes(node):
    assert not is_trigger_node(node)


class TestEnsureTrigger:
    def test_trigger_added_left_of_all_nodes(self):
        workflow = fetched_workflow()

        assert ensure_trigger_node(workflow, now_ms=1700000000000)

        triggers = [node for node in workflow["nodes"] if node["type"] == SCHEDULE_TRIGGER_TYPE]
        assert len(triggers) == 1
        trigger = workflow["nodes"][0]
        assert trigger is triggers[0]
        assert trigger["id"] == "trigger_1700000000000"
        assert trigger["position"] == [200, 250]

    def test_trigger_wired_to_first_node_by_name(self):
        workflow = fetched_workflow()

        ensure_trigger_node(workflow, now_ms=1)

        assert workflow["connections"]["Schedule Trigger"] == {
            "main": [[{"node": "HTTP", "type": "main", "index": 0}]]
        }
        assert workflow["connections"]["HTTP"]["main"][0][0]["node"] == "Code"

    def test_trigger_wired_by_id_when_map_uses_ids(self):
        workflow = {
            "name": "Built",
            "nodes": [
                {"id": "node_1", "name": "A", "type": "t", "position": [0, 300]},
                {"id": "node_2", "name": "B", "type": "t", "position": [200, 300]},
            ],
            "connections": {"node_1": {"main": [[{"node": "node_2", "type": "main", "index": 0}]]}}
        }

        ensure_trigger_node(workflow, now_ms=5)

        assert workflow["connections"]["trigger_5"]["main"][0][0]["node"] == "node_1"

    def test_existing_trigger_left_alone(self):
        workflow = fetched_workflow()
        workflow["nodes"].append({"id": "t", "name": "Hook", "type": "n8n-nodes-base.webhook", "position": [0, 0]})
        before = copy.deepcopy(workflow)

        assert not ensure_trigger_node(workflow)
        assert workflow == before

    def test_empty_workflow_gets_unconnected_trigger(self):
        workflow = {"name": "Empty", "nodes": [], "connections": {}}

        ensure_trigger_node(workflow, now_ms=1)

        assert len(workflow["nodes"]) == 1
        assert workflow["nodes"][0]["position"] == [250, 300]
        assert workflow["connections"] == {}

    def test_trigger_name_does_not_clash(self):
        workflow = fetched_workflow()
        workflow["nodes"][1]["name"] = "Schedule Trigger"

        ensure_trigger_node(workflow, now_ms=1)

        assert workflow["nodes"][0]["name"] == "Schedule Trigger 1"


class TestSetNormalization:
    def test_set_nodes_rewritten(self):
        workflow = fetched_workflow()
        workflow["nodes"].append({
            "id": "s", "name": "Set", "type": "n8n-nodes-base.set",
            "parameters": {"values": [{"name": "k", "value": "v"}]}
        })

        assert normalize_set_nodes(workflow)
        assert workflow["nodes"][-1]["parameters"]["values"][0]["parameterType"] == "propertyValue"

    def test_already_normalized_is_unchanged(self):
        workflow = fetched_workflow()
        workflow["nodes"].append({
            "id": "s", "name": "Set", "type": "n8n-nodes-base.set",
            "parameters": {"values": [{"name": "k", "value": "v"}]}
        })
        normalize_set_nodes(workflow)

        assert not normalize_set_nodes(workflow)


class TestPrepare:
    def test_copy_returned_and_flagged(self):
        workflow = fetched_workflow()

        prepared, changed = prepare_for_activation(workflow, now_ms=1)

        assert changed
        assert len(prepared["nodes"]) == 3
        assert len(workflow["nodes"]) == 2

    def test_nothing_to_fix(self):
        workflow = fetched_workflow()
        workflow["nodes"][0]["type"] = "n8n-nodes-base.webhook"

        prepared, changed = prepare_for_activation(workflow)

        assert not changed
        assert prepared == workflow


def test_update_payload_strips_read_only_fields():
    payload = build_update_payload(fetched_workflow())

    assert set(payload) == {"name", "nodes", "connections", "settings"}
