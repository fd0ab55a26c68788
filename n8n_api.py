"""
n8n platform operations

One coroutine per n8n REST operation. Workflow bodies coming from clients
pass through the translator before they are sent; activation runs the
activation pre-processor first. Every operation accepts an optional
``instance`` naming the environment to target.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from activation import build_update_payload, prepare_for_activation
from api_client import N8NClient
from errors import ExecutionTimeoutError, N8NApiError
from workflow_translator import translate

logger = logging.getLogger(__name__)

PENDING_EXECUTION_STATUSES = {"new", "running", "waiting"}
HIDDEN_WORKFLOW_STATUSES = {"archived", "deleted"}
FAILED_EXECUTION_STATUSES = {"error", "crashed"}


def summarize_workflow(workflow: dict[str, Any]) -> dict[str, Any]:
    """Reduce a workflow to list fields, dropping nodes and connections."""
    return {
        "id": workflow.get("id"),
        "name": workflow.get("name"),
        "active": workflow.get("active"),
        "createdAt": workflow.get("createdAt"),
        "updatedAt": workflow.get("updatedAt"),
        "nodeCount": len(workflow.get("nodes") or []),
        "tags": [tag.get("name") if isinstance(tag, dict) else tag for tag in workflow.get("tags") or []]
    }


def _is_hidden(workflow: dict[str, Any]) -> bool:
    status = workflow.get("status") or workflow.get("state")
    return status in HIDDEN_WORKFLOW_STATUSES or bool(workflow.get("deleted")) or bool(workflow.get("isArchived"))


def _is_pending(execution: dict[str, Any]) -> bool:
    status = execution.get("status")
    if status:
        return status in PENDING_EXECUTION_STATUSES
    return not execution.get("finished")


def _credential_restricted(method: str, endpoint: str, credential_id: Optional[str] = None, **extra: Any) -> dict[str, Any]:
    response = {
        "success": False,
        "method": method,
        "endpoint": endpoint,
        "message": f"{method} {endpoint} is not available through the n8n public API.",
        "securityReason": (
            "n8n does not expose credential secrets over its public API. Reading or "
            "modifying stored credential data is restricted to the n8n UI."
        ),
        "recommendation": "Manage existing credentials in the n8n UI under Credentials.",
        "alternativeApproaches": [
            "Use get_credential_schema to see which fields a credential type needs",
            "Use create_credential to add a new credential",
            "Use delete_credential to remove a credential by id"
        ],
        "availableOperations": ["create_credential", "delete_credential", "get_credential_schema"]
    }
    if credential_id is not None:
        response["credentialId"] = credential_id
    response.update(extra)
    return response


class N8NApi:
    """n8n platform operations over an environment-scoped client"""

    def __init__(self, client: N8NClient):
        self.client = client

    # ------------------------------------------------------------------
    # Environments
    # ------------------------------------------------------------------

    def list_instances(self) -> dict[str, Any]:
        return {
            "instances": self.client.config.get_available_environments(),
            "default": self.client.config.get_default_environment()
        }

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    async def list_workflows(
        self,
        active: Optional[bool] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        instance: Optional[str] = None
    ) -> dict[str, Any]:
        """List workflows as summaries (no nodes or connections)."""
        response = await self.client.request(
            "GET", "/workflows", "listing workflows", instance,
            params={"active": active, "limit": limit, "cursor": cursor}
        )
        workflows = response.get("data", []) if isinstance(response, dict) else response
        if not isinstance(workflows, list):
            raise N8NApiError(
                "Invalid response format from n8n API: expected array of workflows",
                context="listing workflows"
            )
        summaries = [summarize_workflow(workflow) for workflow in workflows if not _is_hidden(workflow)]
        logger.info("Retrieved %d workflows", len(summaries))
        return {
            "data": summaries,
            "nextCursor": response.get("nextCursor") if isinstance(response, dict) else None
        }

    async def get_workflow(self, id: str, instance: Optional[str] = None) -> dict[str, Any]:
        workflow = await self.client.request("GET", f"/workflows/{id}", f"getting workflow with ID {id}", instance)
        logger.info("Retrieved workflow: %s", workflow.get("name"))
        return workflow

    async def create_workflow(self, workflow_input: dict[str, Any], instance: Optional[str] = None) -> dict[str, Any]:
        """Create a workflow, then attach ``workflow_input["tags"]`` (tag ids) if any.

        n8n treats tags as read-only on POST /workflows, so they are set with a
        second request once the workflow has an id.
        """
        logger.info("Creating workflow: %s", workflow_input.get("name"))
        spec = translate(workflow_input)
        logger.debug("Sending workflow data to API: %s", spec)
        workflow = await self.client.request(
            "POST", "/workflows", f"creating workflow {spec['name']}", instance, json_data=spec
        )
        logger.info("Workflow created with ID: %s", workflow.get("id"))

        tag_ids = workflow_input.get("tags") or []
        if tag_ids and workflow.get("id"):
            workflow["tags"] = await self.update_workflow_tags(workflow["id"], tag_ids, instance)
        return workflow

    async def update_workflow_tags(
        self,
        id: str,
        tag_ids: list[str],
        instance: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """Replace the tags of a workflow with the given tag ids."""
        tags = await self.client.request(
            "PUT", f"/workflows/{id}/tags", f"updating tags of workflow with ID {id}", instance,
            json_data=[{"id": tag_id} for tag_id in tag_ids]
        )
        logger.info("Set %d tags on workflow %s", len(tag_ids), id)
        return tags

    async def update_workflow(
        self,
        id: str,
        workflow_input: dict[str, Any],
        instance: Optional[str] = None
    ) -> dict[str, Any]:
        """Replace a workflow. The input must carry the complete node and connection lists."""
        logger.info("Updating workflow with ID: %s", id)
        spec = translate(workflow_input)
        workflow = await self.client.request(
            "PUT", f"/workflows/{id}", f"updating workflow with ID {id}", instance, json_data=spec
        )
        logger.info("Updated workflow: %s", workflow.get("name"))
        return workflow

    async def delete_workflow(self, id: str, instance: Optional[str] = None) -> dict[str, Any]:
        result = await self.client.request("DELETE", f"/workflows/{id}", f"deleting workflow with ID {id}", instance)
        logger.info("Deleted workflow with ID: %s", id)
        return result

    async def activate_workflow(self, id: str, instance: Optional[str] = None) -> dict[str, Any]:
        """Activate a workflow, first adding a trigger and normalizing Set nodes if needed."""
        workflow = await self.get_workflow(id, instance)
        prepared, changed = prepare_for_activation(workflow)
        if changed:
            logger.info("Re-submitting workflow %s with activation fixups", id)
            await self.client.request(
                "PUT", f"/workflows/{id}", f"updating workflow with ID {id} before activation", instance,
                json_data=build_update_payload(prepared)
            )

        result = await self.client.request(
            "POST", f"/workflows/{id}/activate", f"activating workflow with ID {id}", instance, json_data={}
        )
        logger.info("Activated workflow: %s", result.get("name", id))
        return result

    async def deactivate_workflow(self, id: str, instance: Optional[str] = None) -> dict[str, Any]:
        result = await self.client.request(
            "POST", f"/workflows/{id}/deactivate", f"deactivating workflow with ID {id}", instance, json_data={}
        )
        logger.info("Deactivated workflow: %s", result.get("name", id))
        return result

    async def execute_workflow(
        self,
        id: str,
        run_data: Optional[dict[str, Any]] = None,
        wait: bool = False,
        timeout: float = 30.0,
        instance: Optional[str] = None
    ) -> dict[str, Any]:
        logger.info("Executing workflow with ID: %s", id)
        payload = {"data": run_data} if run_data else {}
        result = await self.client.request(
            "POST", f"/workflows/{id}/execute", f"executing workflow with ID {id}", instance, json_data=payload
        )
        execution_id = result.get("executionId") or result.get("id")
        if wait and execution_id is not None:
            return await self.wait_for_execution(execution_id, timeout=timeout, instance=instance)
        return result

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    async def list_executions(
        self,
        include_data: Optional[bool] = None,
        status: Optional[str] = None,
        workflow_id: Optional[str] = None,
        project_id: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        instance: Optional[str] = None
    ) -> dict[str, Any]:
        params = {
            "includeData": include_data,
            "status": status,
            "workflowId": workflow_id,
            "projectId": project_id,
            "limit": limit,
            "cursor": cursor
        }
        result = await self.client.request("GET", "/executions", "listing executions", instance, params=params)
        logger.info("Retrieved %d executions", len(result.get("data") or []))
        return result

    async def get_execution(
        self,
        id: int,
        include_data: Optional[bool] = None,
        instance: Optional[str] = None
    ) -> dict[str, Any]:
        params = {"includeData": True} if include_data else None
        return await self.client.request(
            "GET", f"/executions/{id}", f"getting execution with ID {id}", instance, params=params
        )

    async def delete_execution(self, id: int, instance: Optional[str] = None) -> dict[str, Any]:
        result = await self.client.request("DELETE", f"/executions/{id}", f"deleting execution with ID {id}", instance)
        logger.info("Deleted execution: %s", id)
        return result

    async def retry_execution(self, id: int, instance: Optional[str] = None) -> dict[str, Any]:
        return await self.client.request(
            "POST", f"/executions/{id}/retry", f"retrying execution with ID {id}", instance, json_data={}
        )

    async def wait_for_execution(
        self,
        id: Any,
        timeout: float = 30.0,
        poll_interval: float = 0.5,
        backoff: float = 1.5,
        max_interval: float = 5.0,
        instance: Optional[str] = None
    ) -> dict[str, Any]:
        """Poll an execution until it leaves the new/running/waiting states.

        Raises:
            ExecutionTimeoutError: the execution is still pending after ``timeout`` seconds
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        interval = poll_interval
        while True:
            execution = await self.get_execution(id, instance=instance)
            if not _is_pending(execution):
                return execution
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ExecutionTimeoutError(
                    f"Execution {id} still {execution.get('status', 'running')} after {timeout:g}s"
                )
            logger.debug("Execution %s pending, polling again in %.2fs", id, interval)
            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * backoff, max_interval)

    async def execution_stats(self, instance: Optional[str] = None) -> dict[str, Any]:
        """Summarize the most recent 100 executions."""
        executions = (await self.list_executions(limit=100, instance=instance)).get("data") or []
        succeeded = failed = waiting = 0
        durations = []
        for execution in executions:
            status = execution.get("status")
            if status in FAILED_EXECUTION_STATUSES or execution.get("mode") == "error":
                failed += 1
            elif _is_pending(execution):
                waiting += 1
            else:
                succeeded += 1
            if execution.get("startedAt") and execution.get("stoppedAt") and not _is_pending(execution):
                duration = _duration_seconds(execution["startedAt"], execution["stoppedAt"])
                if duration is not None:
                    durations.append(duration)

        average = sum(durations) / len(durations) if durations else 0.0
        return {
            "total": len(executions),
            "succeeded": succeeded,
            "failed": failed,
            "waiting": waiting,
            "avgExecutionTime": f"{average:.2f}s"
        }

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def create_tag(self, name: str, instance: Optional[str] = None) -> dict[str, Any]:
        tag = await self.client.request("POST", "/tags", f"creating tag {name}", instance, json_data={"name": name})
        logger.info("Created tag: %s", tag.get("name"))
        return tag

    async def get_tags(
        self,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        instance: Optional[str] = None
    ) -> dict[str, Any]:
        return await self.client.request(
            "GET", "/tags", "listing tags", instance, params={"limit": limit, "cursor": cursor}
        )

    async def get_tag(self, id: str, instance: Optional[str] = None) -> dict[str, Any]:
        return await self.client.request("GET", f"/tags/{id}", f"getting tag with ID {id}", instance)

    async def update_tag(self, id: str, name: str, instance: Optional[str] = None) -> dict[str, Any]:
        """Rename a tag.

        If another tag already uses ``name``, a random suffix is appended. The
        check and the write are separate requests, so a concurrent rename can
        still collide; n8n then rejects the update.
        """
        try:
            existing = (await self.get_tags(limit=250, instance=instance)).get("data") or []
            if any(tag.get("name") == name and str(tag.get("id")) != str(id) for tag in existing):
                unique_name = f"{name}-{uuid.uuid4().hex[:6]}"
                logger.warning("Tag name '%s' already in use, renaming to '%s'", name, unique_name)
                name = unique_name
        except N8NApiError as e:
            logger.warning("Could not check tag name uniqueness, continuing: %s", e)

        tag = await self.client.request(
            "PUT", f"/tags/{id}", f"updating tag with ID {id}", instance, json_data={"name": name}
        )
        logger.info("Updated tag: %s", tag.get("name"))
        return tag

    async def delete_tag(self, id: str, instance: Optional[str] = None) -> dict[str, Any]:
        result = await self.client.request("DELETE", f"/tags/{id}", f"deleting tag with ID {id}", instance)
        logger.info("Deleted tag: %s", id)
        return result

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def create_credential(
        self,
        name: str,
        type: str,
        data: dict[str, Any],
        instance: Optional[str] = None
    ) -> dict[str, Any]:
        credential = await self.client.request(
            "POST", "/credentials", f"creating credential {name}", instance,
            json_data={"name": name, "type": type, "data": data}
        )
        logger.info("Created credential: %s", credential.get("id"))
        return credential

    async def delete_credential(self, id: str, instance: Optional[str] = None) -> dict[str, Any]:
        result = await self.client.request(
            "DELETE", f"/credentials/{id}", f"deleting credential with ID {id}", instance
        )
        logger.info("Deleted credential: %s", id)
        return result

    async def get_credential_schema(self, credential_type: str, instance: Optional[str] = None) -> dict[str, Any]:
        return await self.client.request(
            "GET", f"/credentials/schema/{credential_type}",
            f"getting credential schema for {credential_type}", instance
        )

    def list_credentials(self) -> dict[str, Any]:
        return _credential_restricted("GET", "/credentials")

    def get_credential(self, id: str) -> dict[str, Any]:
        return _credential_restricted("GET", f"/credentials/{id}", credential_id=id)

    def update_credential(self, id: str) -> dict[str, Any]:
        return _credential_restricted(
            "PUT", f"/credentials/{id}", credential_id=id,
            workaround={
                "description": "Replace the credential instead of updating it in place.",
                "steps": [
                    "1. Call create_credential with the new name, type and data",
                    "2. Point the workflows that use the old credential at the new one",
                    "3. Call delete_credential with the old credential id"
                ]
            }
        )


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _duration_seconds(started_at: str, stopped_at: str) -> Optional[float]:
    try:
        return (_parse_timestamp(stopped_at) - _parse_timestamp(started_at)).total_seconds()
    except ValueError:
        return None
