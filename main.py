"""
n8n Workflow Builder MCP Server - FastMCP Implementation

Exposes the n8n REST API as MCP tools for managing workflows, executions,
tags and credentials, plus resources for browsing workflows and executions
and prompts with ready-made workflow templates.
"""
import json
import logging
import os
import sys
from typing import Any, Optional, Union

from fastmcp import FastMCP
from fastmcp.exceptions import NotFoundError, ToolError, ValidationError
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from mcp import MCPError
from mcp.types import INVALID_PARAMS, METHOD_NOT_FOUND
from pydantic import ValidationError as PydanticValidationError

from api_client import N8NClient
from config import ConfigLoader
from errors import ConfigurationError, WorkflowValidationError
from n8n_api import N8NApi
from prompts import fill_prompt_template, get_prompt
from workflow_translator import connections_to_legacy

logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG", "").lower() == "true" else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("n8n_workflow_builder")


class ProtocolErrorMiddleware(Middleware):
    """Report unknown tools and bad arguments as JSON-RPC errors.

    FastMCP returns these as ordinary ``isError`` tool results; MCP clients
    expect -32601 for an unknown tool and -32602 for invalid arguments.
    Workflow validation failures count as invalid arguments.
    """

    async def on_call_tool(self, context: MiddlewareContext, call_next: CallNext) -> Any:
        name = context.message.name
        try:
            return await call_next(context)
        except NotFoundError as e:
            raise MCPError(code=METHOD_NOT_FOUND, message=f"Unknown tool: {name}") from e
        except (ValidationError, PydanticValidationError) as e:
            raise MCPError(code=INVALID_PARAMS, message=f"Invalid arguments for tool {name}: {e}") from e
        except ToolError as e:
            if isinstance(e.__cause__, WorkflowValidationError):
                raise MCPError(code=INVALID_PARAMS, message=str(e.__cause__)) from e
            raise


# Initialize FastMCP server
mcp = FastMCP("n8n-workflow-builder")
mcp.add_middleware(ProtocolErrorMiddleware())

# Configuration is read on first use, not at import
config = ConfigLoader()
api = N8NApi(N8NClient(config))


def _require(value: Any, label: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"{label} is required")


# ============================================================
# ENVIRONMENT TOOLS
# ============================================================

@mcp.tool
async def list_instances() -> dict[str, Any]:
    """
    List the n8n environments this server is configured for.

    Every other tool accepts an optional `instance` argument naming one of these
    environments; when omitted, the default environment is used.

    Returns:
        Dictionary with the available instance names and the default one
    """
    return api.list_instances()


# ============================================================
# WORKFLOWS TOOLS
# ============================================================

@mcp.tool
async def list_workflows(
    active: Optional[bool] = None,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    instance: Optional[str] = None
) -> dict[str, Any]:
    """
    List workflows in n8n.

    Returns summaries only (id, name, active, createdAt, updatedAt, nodeCount, tags).
    Use get_workflow for the full node and connection definitions.

    Args:
        active: Filter by active status
        limit: Maximum number of workflows to return
        cursor: Pagination cursor from a previous response
        instance: n8n environment name (default environment if omitted)

    Returns:
        Dictionary with workflow summaries and the next pagination cursor
    """
    return await api.list_workflows(active=active, limit=limit, cursor=cursor, instance=instance)


@mcp.tool
async def get_workflow(id: str, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Get a workflow by ID, including its nodes and connections.

    Args:
        id: Workflow ID
        instance: n8n environment name

    Returns:
        Dictionary with workflow details
    """
    _require(id, "Workflow ID")
    return await api.get_workflow(id, instance=instance)


@mcp.tool
async def create_workflow(
    name: str,
    nodes: list[dict[str, Any]],
    connections: Optional[list[dict[str, Any]]] = None,
    settings: Optional[dict[str, Any]] = None,
    active: bool = False,
    tags: Optional[list[str]] = None,
    instance: Optional[str] = None
) -> dict[str, Any]:
    """
    Create a new workflow in n8n.

    Nodes are given as a flat list and connected by name or ID. Node IDs are
    generated (node_1, node_2, ...) when omitted. Set node values are converted
    to the format n8n expects.

    Args:
        name: Workflow name
        nodes: Workflow nodes, each with:
            - type: Node type (e.g. "n8n-nodes-base.code", "n8n-nodes-base.httpRequest")
            - name: Display name, unique within the workflow
            - parameters: Optional node-specific configuration
            - id: Optional node ID
            - position: Optional [x, y] canvas position
        connections: How data flows between nodes, each with:
            - source: Source node name or ID
            - target: Target node name or ID
            - sourceOutput: Output index of the source node (default: 0)
            - targetInput: Input index of the target node (default: 0)
        settings: Workflow settings, merged over {"executionOrder": "v1"}
        active: Activate the workflow right after creating it (default: False)
        tags: IDs of existing tags to attach once the workflow is created
        instance: n8n environment name

    Returns:
        Dictionary with created workflow data

    Example:
        create_workflow(
            name="Hello",
            nodes=[
                {"name": "Start", "type": "n8n-nodes-base.manualTrigger"},
                {"name": "Set", "type": "n8n-nodes-base.set",
                 "parameters": {"values": [{"name": "data", "value": "hi"}]}}
            ],
            connections=[{"source": "Start", "target": "Set"}]
        )
    """
    _require(name, "Workflow name")
    workflow_input = {
        "name": name,
        "nodes": nodes,
        "connections": connections or [],
        "settings": settings,
        "tags": tags
    }
    created = await api.create_workflow(workflow_input, instance=instance)

    if active and created.get("id"):
        return await api.activate_workflow(created["id"], instance=instance)
    return created


@mcp.tool
async def update_workflow(
    id: str,
    name: str,
    nodes: list[dict[str, Any]],
    connections: Optional[Union[list[dict[str, Any]], dict[str, Any]]] = None,
    settings: Optional[dict[str, Any]] = None,
    instance: Optional[str] = None
) -> dict[str, Any]:
    """
    Replace an existing workflow.

    This is a full update: pass the complete node and connection lists, not
    only the changed parts. Fetch the workflow with get_workflow first when
    modifying it.

    Args:
        id: Workflow ID to update
        name: Workflow name
        nodes: Complete node list (see create_workflow)
        connections: Either a list of {source, target, sourceOutput, targetInput}
            or the n8n connection map as returned by get_workflow
        settings: Workflow settings
        instance: n8n environment name

    Returns:
        Dictionary with updated workflow data
    """
    _require(id, "Workflow ID")
    if isinstance(connections, dict):
        connections = connections_to_legacy(connections)

    workflow_input = {
        "name": name,
        "nodes": nodes,
        "connections": connections or [],
        "settings": settings
    }
    return await api.update_workflow(id, workflow_input, instance=instance)


@mcp.tool
async def delete_workflow(id: str, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Delete a workflow.

    Args:
        id: Workflow ID to delete
        instance: n8n environment name

    Returns:
        Dictionary with the deleted workflow
    """
    _require(id, "Workflow ID")
    return await api.delete_workflow(id, instance=instance)


@mcp.tool
async def activate_workflow(id: str, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Activate a workflow.

    n8n only activates workflows with a trigger node. When none is present, a
    Schedule Trigger (hourly) is added in front of the first node. Set node
    parameters are normalized at the same time. The workflow is saved with
    these changes before activation.

    Args:
        id: Workflow ID to activate
        instance: n8n environment name

    Returns:
        Dictionary with the activated workflow
    """
    _require(id, "Workflow ID")
    return await api.activate_workflow(id, instance=instance)


@mcp.tool
async def deactivate_workflow(id: str, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Deactivate a workflow.

    Args:
        id: Workflow ID to deactivate
        instance: n8n environment name

    Returns:
        Dictionary with the deactivated workflow
    """
    _require(id, "Workflow ID")
    return await api.deactivate_workflow(id, instance=instance)


@mcp.tool
async def execute_workflow(
    id: str,
    run_data: Optional[dict[str, Any]] = None,
    wait_for_completion: bool = False,
    timeout: float = 30.0,
    instance: Optional[str] = None
) -> dict[str, Any]:
    """
    Manually execute a workflow.

    Args:
        id: Workflow ID to execute
        run_data: Optional data passed to the workflow
        wait_for_completion: Poll the execution until it finishes (default: False)
        timeout: Maximum seconds to wait when wait_for_completion is set (default: 30)
        instance: n8n environment name

    Returns:
        Dictionary with the execution, or the finished execution when waiting
    """
    _require(id, "Workflow ID")
    return await api.execute_workflow(
        id, run_data=run_data, wait=wait_for_completion, timeout=timeout, instance=instance
    )


# ============================================================
# EXECUTIONS TOOLS
# ============================================================

@mcp.tool
async def list_executions(
    include_data: Optional[bool] = None,
    status: Optional[str] = None,
    workflow_id: Optional[str] = None,
    project_id: Optional[str] = None,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    instance: Optional[str] = None
) -> dict[str, Any]:
    """
    List workflow executions.

    Args:
        include_data: Include execution data in the response
        status: Filter by status (error, success, waiting)
        workflow_id: Filter by workflow ID
        project_id: Filter by project ID
        limit: Maximum number of executions to return
        cursor: Pagination cursor from a previous response
        instance: n8n environment name

    Returns:
        Dictionary with executions data and the next pagination cursor
    """
    if status is not None and status not in ("error", "success", "waiting"):
        raise ValueError("status must be one of: error, success, waiting")

    return await api.list_executions(
        include_data=include_data,
        status=status,
        workflow_id=workflow_id,
        project_id=project_id,
        limit=limit,
        cursor=cursor,
        instance=instance
    )


@mcp.tool
async def get_execution(
    id: int,
    include_data: Optional[bool] = None,
    instance: Optional[str] = None
) -> dict[str, Any]:
    """
    Get a specific execution.

    Args:
        id: Execution ID
        include_data: Include the execution's node data
        instance: n8n environment name

    Returns:
        Dictionary with execution details
    """
    return await api.get_execution(id, include_data=include_data, instance=instance)


@mcp.tool
async def delete_execution(id: int, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Delete an execution.

    Args:
        id: Execution ID
        instance: n8n environment name

    Returns:
        Dictionary with the deleted execution
    """
    return await api.delete_execution(id, instance=instance)


@mcp.tool
async def retry_execution(id: int, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Retry a failed execution.

    Args:
        id: Execution ID of a failed execution
        instance: n8n environment name

    Returns:
        Dictionary with the new execution
    """
    return await api.retry_execution(id, instance=instance)


# ============================================================
# TAGS TOOLS
# ============================================================

@mcp.tool
async def create_tag(name: str, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Create a new tag.

    Args:
        name: Tag name (must be unique)
        instance: n8n environment name

    Returns:
        Dictionary with created tag
    """
    _require(name, "Tag name")
    return await api.create_tag(name, instance=instance)


@mcp.tool
async def get_tags(
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    instance: Optional[str] = None
) -> dict[str, Any]:
    """
    List all tags.

    Args:
        limit: Maximum number of tags to return
        cursor: Pagination cursor from a previous response
        instance: n8n environment name

    Returns:
        Dictionary with tags data and the next pagination cursor
    """
    return await api.get_tags(limit=limit, cursor=cursor, instance=instance)


@mcp.tool
async def get_tag(id: str, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Get a tag by ID.

    Args:
        id: Tag ID
        instance: n8n environment name

    Returns:
        Dictionary with tag details
    """
    _require(id, "Tag ID")
    return await api.get_tag(id, instance=instance)


@mcp.tool
async def update_tag(id: str, name: str, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Rename a tag.

    If another tag already has this name, a short random suffix is appended
    to keep tag names unique.

    Args:
        id: Tag ID
        name: New tag name
        instance: n8n environment name

    Returns:
        Dictionary with updated tag
    """
    _require(id, "Tag ID")
    _require(name, "Tag name")
    return await api.update_tag(id, name, instance=instance)


@mcp.tool
async def delete_tag(id: str, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Delete a tag.

    Args:
        id: Tag ID
        instance: n8n environment name

    Returns:
        Dictionary with the deleted tag
    """
    _require(id, "Tag ID")
    return await api.delete_tag(id, instance=instance)


# ============================================================
# CREDENTIALS TOOLS
# ============================================================

@mcp.tool
async def list_credentials() -> dict[str, Any]:
    """
    Explain how to work with credentials.

    The n8n public API does not allow listing credentials. This returns the
    operations that are available instead.
    """
    return api.list_credentials()


@mcp.tool
async def get_credential(id: str) -> dict[str, Any]:
    """
    Explain why a credential cannot be read through the API.

    Args:
        id: Credential ID
    """
    _require(id, "Credential ID")
    return api.get_credential(id)


@mcp.tool
async def create_credential(
    name: str,
    type: str,
    data: dict[str, Any],
    instance: Optional[str] = None
) -> dict[str, Any]:
    """
    Create a credential.

    Use get_credential_schema to find the fields required by a credential type.

    Args:
        name: Credential name
        type: Credential type (e.g. "httpBasicAuth", "githubApi")
        data: Credential fields matching the type's schema
        instance: n8n environment name

    Returns:
        Dictionary with created credential (without secret data)
    """
    _require(name, "Credential name")
    _require(type, "Credential type")
    return await api.create_credential(name, type, data, instance=instance)


@mcp.tool
async def update_credential(id: str) -> dict[str, Any]:
    """
    Explain how to change a credential.

    The n8n public API does not allow updating credentials; the response
    describes the replace-and-delete workaround.

    Args:
        id: Credential ID
    """
    _require(id, "Credential ID")
    return api.update_credential(id)


@mcp.tool
async def delete_credential(id: str, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Delete a credential.

    Args:
        id: Credential ID
        instance: n8n environment name

    Returns:
        Dictionary with the deleted credential
    """
    _require(id, "Credential ID")
    return await api.delete_credential(id, instance=instance)


@mcp.tool
async def get_credential_schema(credential_type: str, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Get the JSON schema of a credential type.

    Args:
        credential_type: Credential type name (e.g. "httpBasicAuth")
        instance: n8n environment name

    Returns:
        JSON schema with properties and required fields
    """
    _require(credential_type, "Credential type")
    return await api.get_credential_schema(credential_type, instance=instance)


# ============================================================
# PROMPT TEMPLATES
# ============================================================

@mcp.tool
async def fill_prompt(prompt_id: str, variables: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """
    Fill a workflow template with variables.

    Available templates: schedule-workflow, http-webhook-workflow,
    data-transformation-workflow, integration-workflow. Variables that are not
    given fall back to the template defaults.

    Args:
        prompt_id: Template ID
        variables: Values for the template's placeholders

    Returns:
        Dictionary with the filled workflow, ready to pass to create_workflow
    """
    return {
        "promptId": prompt_id,
        "workflowData": fill_prompt_template(prompt_id, variables)
    }


def _workflow_prompt(prompt_id: str, variables: dict[str, Optional[str]]) -> str:
    prompt = get_prompt(prompt_id)
    workflow = fill_prompt_template(prompt_id, {k: v for k, v in variables.items() if v})
    return (
        f"{prompt.description}. Create it with the create_workflow tool using this definition:\n\n"
        f"{json.dumps(workflow, indent=2)}"
    )


@mcp.prompt(name="schedule-workflow", description="Create a workflow that runs on a schedule")
def schedule_workflow(
    workflow_name: Optional[str] = None,
    schedule_expression: Optional[str] = None,
    workflow_message: Optional[str] = None
) -> str:
    return _workflow_prompt("schedule-workflow", locals())


@mcp.prompt(name="http-webhook-workflow", description="Create a workflow that responds to HTTP webhook requests")
def http_webhook_workflow(
    workflow_name: Optional[str] = None,
    webhook_path: Optional[str] = None,
    response_message: Optional[str] = None
) -> str:
    return _workflow_prompt("http-webhook-workflow", locals())


@mcp.prompt(name="data-transformation-workflow", description="Create a workflow for processing and transforming data")
def data_transformation_workflow(
    workflow_name: Optional[str] = None,
    sample_data: Optional[str] = None,
    transformation_code: Optional[str] = None
) -> str:
    return _workflow_prompt("data-transformation-workflow", locals())


@mcp.prompt(name="integration-workflow", description="Create a workflow that integrates with external services")
def integration_workflow(
    workflow_name: Optional[str] = None,
    schedule_expression: Optional[str] = None,
    api_url: Optional[str] = None,
    processing_code: Optional[str] = None
) -> str:
    return _workflow_prompt("integration-workflow", locals())


# ============================================================
# RESOURCES
# ============================================================

@mcp.resource("n8n://workflows", name="Workflows List", mime_type="application/json")
async def workflows_resource() -> str:
    """List of all available workflows"""
    return json.dumps(await api.list_workflows(), indent=2)


@mcp.resource("n8n://execution-stats", name="Execution Statistics", mime_type="application/json")
async def execution_stats_resource() -> str:
    """Summary statistics of recent workflow executions"""
    return json.dumps(await api.execution_stats(), indent=2)


@mcp.resource("n8n://workflows/{id}", name="Workflow Details", mime_type="application/json")
async def workflow_resource(id: str) -> str:
    """Details of a specific workflow"""
    return json.dumps(await api.get_workflow(id), indent=2)


@mcp.resource("n8n://executions/{id}", name="Execution Details", mime_type="application/json")
async def execution_resource(id: str) -> str:
    """Details of a specific execution"""
    if not id.isdigit():
        raise ValueError("Execution ID must be a number")
    return json.dumps(await api.get_execution(int(id), include_data=True), indent=2)


# ============================================================
# SERVER STARTUP
# ============================================================

def main() -> None:
    try:
        environments = config.get_available_environments()
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)
    logger.info(
        "Starting n8n workflow builder for environments: %s (default: %s)",
        ", ".join(environments), config.get_default_environment()
    )

    # stdio by default; stdout carries the protocol, so logs go to stderr
    if os.getenv("MCP_TRANSPORT", "stdio") == "http":
        port = int(os.getenv("PORT", 8000))
        mcp.run(transport="http", host=os.getenv("HOST", "0.0.0.0"), port=port)
    else:
        mcp.run()


if __name__ == "__main__":
    main()
