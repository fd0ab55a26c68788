"""
Activation pre-processing for n8n workflows

n8n refuses to activate a workflow without a trigger node and rejects Set
node parameters that are not in the propertyValue shape. Before activating,
a fetched workflow is checked for both and fixed up where needed; the caller
re-submits the fixed workflow before issuing the activate call.
"""
import copy
import logging
import time
from typing import Any, Optional

from workflow_translator import normalize_set_parameters

logger = logging.getLogger(__name__)

TRIGGER_KEYWORDS = ("trigger", "webhook", "cron", "interval", "schedule")
SCHEDULE_TRIGGER_TYPE = "n8n-nodes-base.scheduleTrigger"
SCHEDULE_TRIGGER_NAME = "Schedule Trigger"
TRIGGER_OFFSET_X = 200
DEFAULT_TRIGGER_POSITION = [250, 300]

# Fields n8n accepts on PUT /workflows/{id}; everything else is read-only.
UPDATABLE_FIELDS = ("name", "nodes", "connections", "settings")


def is_trigger_node(node: dict[str, Any]) -> bool:
    node_type = str(node.get("type") or "").lower()
    if any(keyword in node_type for keyword in TRIGGER_KEYWORDS):
        return True
    return "trigger" in (node.get("group") or [])


def is_set_node(node: dict[str, Any]) -> bool:
    return "set" in str(node.get("type") or "").lower()


def _unique_name(base: str, nodes: list[dict[str, Any]]) -> str:
    names = {node.get("name") for node in nodes}
    name, suffix = base, 1
    while name in names:
        name = f"{base} {suffix}"
        suffix += 1
    return name


def _connections_keyed_by_name(workflow: dict[str, Any]) -> bool:
    # n8n itself keys connections by node name; workflows built by the
    # translator key them by id. Follow whatever the map already does.
    connections = workflow.get("connections") or {}
    ids = {node.get("id") for node in workflow.get("nodes") or []}
    names = {node.get("name") for node in workflow.get("nodes") or []}
    if not connections:
        return bool(workflow.get("id"))
    return any(key in names and key not in ids for key in connections)


def build_schedule_trigger(nodes: list[dict[str, Any]], now_ms: Optional[int] = None) -> dict[str, Any]:
    """Create a schedule trigger positioned left of every existing node."""
    positions = [node["position"] for node in nodes if node.get("position")]
    if positions:
        position = [min(p[0] for p in positions) - TRIGGER_OFFSET_X, min(p[1] for p in positions)]
    else:
        position = list(DEFAULT_TRIGGER_POSITION)

    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return {
        "id": f"trigger_{stamp}",
        "name": _unique_name(SCHEDULE_TRIGGER_NAME, nodes),
        "type": SCHEDULE_TRIGGER_TYPE,
        "typeVersion": 1.1,
        "position": position,
        "parameters": {
            "rule": {
                "interval": [{"field": "hours", "hoursInterval": 1}]
            }
        }
    }


def ensure_trigger_node(workflow: dict[str, Any], now_ms: Optional[int] = None) -> bool:
    """Insert a schedule trigger when the workflow has none. Mutates ``workflow``.

    Returns:
        True when a trigger was added
    """
    nodes = workflow.setdefault("nodes", [])
    if any(is_trigger_node(node) for node in nodes):
        return False

    by_name = _connections_keyed_by_name(workflow)
    trigger = build_schedule_trigger(nodes, now_ms)
    logger.info("No trigger node found, adding %s '%s'", SCHEDULE_TRIGGER_TYPE, trigger["name"])

    if nodes:
        first = nodes[0]
        key = "name" if by_name else "id"
        connections = workflow.get("connections") or {}
        connections[trigger[key]] = {
            "main": [[{"node": first[key], "type": "main", "index": 0}]]
        }
        workflow["connections"] = connections

    nodes.insert(0, trigger)
    return True


def normalize_set_nodes(workflow: dict[str, Any]) -> bool:
    """Normalize every Set node's parameters in place.

    Returns:
        True when any node's parameters changed
    """
    changed = False
    for node in workflow.get("nodes") or []:
        if not is_set_node(node):
            continue
        normalized = normalize_set_parameters(node.get("parameters"))
        if normalized != node.get("parameters"):
            node["parameters"] = normalized
            changed = True
    return changed


def prepare_for_activation(
    workflow: dict[str, Any],
    now_ms: Optional[int] = None
) -> tuple[dict[str, Any], bool]:
    """Return a copy of ``workflow`` fixed up for activation and whether it changed."""
    prepared = copy.deepcopy(workflow)
    added_trigger = ensure_trigger_node(prepared, now_ms)
    normalized = normalize_set_nodes(prepared)
    return prepared, added_trigger or normalized


def build_update_payload(workflow: dict[str, Any]) -> dict[str, Any]:
    """Keep only the fields a full workflow update accepts."""
    payload = {field: workflow[field] for field in UPDATABLE_FIELDS if field in workflow}
    payload.setdefault("settings", {})
    return payload
