"""
Workflow translation between the client format and the n8n format

Clients describe a workflow as a flat list of nodes and a list of
source/target connections that reference nodes by id or name. n8n expects
every node to carry an id, position and typeVersion, and connections as a
map from source node to per-output-port lists of targets.
"""
import copy
from typing import Any, Optional

from errors import WorkflowValidationError

SET_NODE_TYPE = "n8n-nodes-base.set"
DEFAULT_WORKFLOW_NAME = "New Workflow"
DEFAULT_SETTINGS = {"executionOrder": "v1"}
NODE_SPACING = 200
DEFAULT_ROW_Y = 300


def _normalize_set_value(value: dict[str, Any], value_type: Optional[str] = None) -> dict[str, Any]:
    return {
        "name": value.get("name"),
        "value": value.get("value"),
        "type": value.get("type") or value_type or "string",
        "parameterType": "propertyValue"
    }


def normalize_set_parameters(parameters: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Rewrite Set node parameters into the propertyValue shape n8n accepts.

    Parameters without a ``values`` key are returned unchanged; an empty list
    still counts as present. ``values`` may be a list of
    ``{name, value, type?}`` entries or the older shape keyed by value type
    (``{"string": [...], "number": [...]}``). The result is always::

        {"values": [...], "options": {"dotNotation": True}, "mode": "manual"}

    Applying the function to its own output returns an equal dict.
    """
    if not parameters or parameters.get("values") is None:
        return parameters

    values = parameters["values"]
    if isinstance(values, dict):
        entries = [
            _normalize_set_value(value, value_type)
            for value_type, typed_values in values.items()
            for value in typed_values or []
            if isinstance(value, dict)
        ]
    else:
        entries = [_normalize_set_value(value) for value in values if isinstance(value, dict)]

    return {
        "values": entries,
        "options": {"dotNotation": True},
        "mode": "manual"
    }


def _find_node(nodes: list[dict[str, Any]], ref: Any) -> Optional[dict[str, Any]]:
    for node in nodes:
        if node["id"] == ref:
            return node
    for node in nodes:
        if node["name"] == ref:
            return node
    return None


def _format_node(node: Any, index: int) -> dict[str, Any]:
    if not isinstance(node, dict) or not isinstance(node.get("type"), str) or not isinstance(node.get("name"), str):
        raise WorkflowValidationError("Each node must have a type and name")

    parameters = copy.deepcopy(node.get("parameters") or {})
    if node["type"] == SET_NODE_TYPE:
        parameters = normalize_set_parameters(parameters)

    return {
        "id": node.get("id") or f"node_{index + 1}",
        "name": node["name"],
        "type": node["type"],
        "parameters": parameters,
        "position": list(node.get("position") or [index * NODE_SPACING, DEFAULT_ROW_Y]),
        "typeVersion": node.get("typeVersion") or 1
    }


def _port(conn: dict[str, Any], key: str) -> int:
    value = conn.get(key) or 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise WorkflowValidationError(f"Connection {key} must be a non-negative integer")
    return value


def add_connection(
    connections: dict[str, Any],
    source_id: str,
    target_id: str,
    source_output: int = 0,
    target_input: int = 0
) -> None:
    """Append a main connection, creating empty lists for skipped output ports."""
    main = connections.setdefault(source_id, {"main": []})["main"]
    while len(main) <= source_output:
        main.append([])
    main[source_output].append({"node": target_id, "type": "main", "index": target_input})


def translate(workflow_input: Any) -> dict[str, Any]:
    """Convert a client workflow description into an n8n workflow.

    The input is left untouched. Node ids that are missing are derived from
    the node's position in the list (``node_1``, ``node_2``, ...), so
    reordering nodes changes the generated ids.

    Raises:
        WorkflowValidationError: the input, a node or a connection is malformed
    """
    if not isinstance(workflow_input, dict):
        raise WorkflowValidationError("Workflow spec must be an object")

    raw_nodes = workflow_input.get("nodes")
    if not isinstance(raw_nodes, list):
        raise WorkflowValidationError("Workflow nodes must be an array")

    nodes = [_format_node(node, index) for index, node in enumerate(raw_nodes)]

    seen: set[str] = set()
    for node in nodes:
        if node["id"] in seen:
            raise WorkflowValidationError(f"Duplicate node id: {node['id']}")
        seen.add(node["id"])

    connections: dict[str, Any] = {}
    raw_connections = workflow_input.get("connections") or []
    if not isinstance(raw_connections, list):
        raise WorkflowValidationError("Workflow connections must be an array")

    for conn in raw_connections:
        if not isinstance(conn, dict):
            raise WorkflowValidationError("Each connection must be an object with source and target")
        source = _find_node(nodes, conn.get("source"))
        target = _find_node(nodes, conn.get("target"))
        if source is None or target is None:
            raise WorkflowValidationError(
                f"Connection references non-existent node: {conn.get('source')} -> {conn.get('target')}"
            )
        add_connection(
            connections,
            source["id"],
            target["id"],
            _port(conn, "sourceOutput"),
            _port(conn, "targetInput")
        )

    settings = {**DEFAULT_SETTINGS, **(workflow_input.get("settings") or {})}

    return {
        "name": workflow_input.get("name") or DEFAULT_WORKFLOW_NAME,
        "nodes": nodes,
        "connections": connections,
        "settings": settings
    }


def connections_to_legacy(connection_map: dict[str, Any]) -> list[dict[str, Any]]:
    """Flatten an n8n connection map into source/target connection dicts."""
    legacy = []
    for source, outputs in connection_map.items():
        for source_output, targets in enumerate((outputs or {}).get("main") or []):
            for target in targets or []:
                legacy.append({
                    "source": source,
                    "target": target["node"],
                    "sourceOutput": source_output,
                    "targetInput": target.get("index") or 0
                })
    return legacy
