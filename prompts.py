"""
Workflow prompt templates

Canned workflow descriptions in the client format with ``{variable}``
placeholders. Filling a template substitutes the variables and yields a
workflow input ready for create_workflow.
"""
import copy
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from errors import PromptNotFoundError

PLACEHOLDER = re.compile(r"\{([^{}]+)\}")


@dataclass(frozen=True)
class PromptVariable:
    name: str
    description: str
    default: Optional[str] = None
    required: bool = False


@dataclass(frozen=True)
class WorkflowPrompt:
    id: str
    name: str
    description: str
    template: dict[str, Any]
    variables: list[PromptVariable] = field(default_factory=list)

    def variable(self, name: str) -> Optional[PromptVariable]:
        return next((v for v in self.variables if v.name == name), None)


SCHEDULE_WORKFLOW = WorkflowPrompt(
    id="schedule-workflow",
    name="Schedule Triggered Workflow",
    description="Create a workflow that runs on a schedule",
    template={
        "name": "{workflow_name}",
        "nodes": [
            {
                "name": "Schedule Trigger",
                "type": "n8n-nodes-base.cron",
                "parameters": {
                    "rule": "{schedule_expression}",
                    "additionalParameters": {"timezone": "UTC"}
                }
            },
            {
                "name": "Code Script",
                "type": "n8n-nodes-base.code",
                "parameters": {
                    "jsCode": (
                        "return {\n"
                        "  timestamp: new Date().toISOString(),\n"
                        "  message: \"{workflow_message}\",\n"
                        "  executionId: $execution.id\n"
                        "};"
                    )
                }
            }
        ],
        "connections": [{"source": "Schedule Trigger", "target": "Code Script"}]
    },
    variables=[
        PromptVariable("workflow_name", "Name of the workflow", "Scheduled Workflow", True),
        PromptVariable(
            "schedule_expression",
            "Cron expression for schedule (e.g. */5 * * * * for every 5 minutes)",
            "*/5 * * * *",
            True
        ),
        PromptVariable("workflow_message", "Message to include in the workflow execution",
                       "Scheduled execution triggered"),
    ]
)

HTTP_WEBHOOK_WORKFLOW = WorkflowPrompt(
    id="http-webhook-workflow",
    name="HTTP Webhook Workflow",
    description="Create a workflow that responds to HTTP webhook requests",
    template={
        "name": "{workflow_name}",
        "nodes": [
            {
                "name": "Webhook",
                "type": "n8n-nodes-base.webhook",
                "parameters": {
                    "httpMethod": "POST",
                    "path": "{webhook_path}",
                    "options": {"responseMode": "lastNode"}
                }
            },
            {
                "name": "Process Data",
                "type": "n8n-nodes-base.code",
                "parameters": {
                    "jsCode": (
                        "const data = $input.first().json;\n\n"
                        "return {\n"
                        "  processed: true,\n"
                        "  timestamp: new Date().toISOString(),\n"
                        "  data,\n"
                        "  message: \"{response_message}\"\n"
                        "};"
                    )
                }
            }
        ],
        "connections": [{"source": "Webhook", "target": "Process Data"}]
    },
    variables=[
        PromptVariable("workflow_name", "Name of the workflow", "Webhook Workflow", True),
        PromptVariable("webhook_path", 'Path for the webhook (e.g. "my-webhook")', "my-webhook", True),
        PromptVariable("response_message", "Message to include in the response",
                       "Webhook processed successfully"),
    ]
)

DATA_TRANSFORMATION_WORKFLOW = WorkflowPrompt(
    id="data-transformation-workflow",
    name="Data Transformation Workflow",
    description="Create a workflow for processing and transforming data",
    template={
        "name": "{workflow_name}",
        "nodes": [
            {"name": "Manual Trigger", "type": "n8n-nodes-base.manualTrigger", "parameters": {}},
            {
                "name": "Input Data",
                "type": "n8n-nodes-base.set",
                "parameters": {
                    "values": [{"name": "data", "value": "{sample_data}", "type": "json"}],
                    "options": {"dotNotation": True}
                }
            },
            {
                "name": "Transform Data",
                "type": "n8n-nodes-base.code",
                "parameters": {
                    "jsCode": (
                        "const data = $input.first().json.data;\n\n"
                        "// Apply transformation\n"
                        "{transformation_code}\n\n"
                        "return { result: data };"
                    )
                }
            }
        ],
        "connections": [
            {"source": "Manual Trigger", "target": "Input Data"},
            {"source": "Input Data", "target": "Transform Data"}
        ]
    },
    variables=[
        PromptVariable("workflow_name", "Name of the workflow", "Data Transformation Workflow", True),
        PromptVariable(
            "sample_data",
            "Sample JSON data to transform",
            '{"items": [{"id": 1, "name": "Item 1"}, {"id": 2, "name": "Item 2"}]}',
            True
        ),
        PromptVariable(
            "transformation_code",
            "JavaScript code for data transformation",
            "// Example: Add a processed flag to each item\n"
            "data.items = data.items.map(item => ({\n"
            "  ...item,\n"
            "  processed: true,\n"
            "  processedAt: new Date().toISOString()\n"
            "}));",
            True
        ),
    ]
)

INTEGRATION_WORKFLOW = WorkflowPrompt(
    id="integration-workflow",
    name="External Service Integration Workflow",
    description="Create a workflow that integrates with external services",
    template={
        "name": "{workflow_name}",
        "nodes": [
            {
                "name": "Schedule Trigger",
                "type": "n8n-nodes-base.cron",
                "parameters": {
                    "rule": "{schedule_expression}",
                    "additionalParameters": {"timezone": "UTC"}
                }
            },
            {
                "name": "HTTP Request",
                "type": "n8n-nodes-base.httpRequest",
                "parameters": {
                    "url": "{api_url}",
                    "method": "GET",
                    "authentication": "none",
                    "options": {}
                }
            },
            {
                "name": "Process Response",
                "type": "n8n-nodes-base.code",
                "parameters": {
                    "jsCode": (
                        "const data = $input.first().json;\n\n"
                        "// Process the API response\n"
                        "{processing_code}\n\n"
                        "return { result: data };"
                    )
                }
            }
        ],
        "connections": [
            {"source": "Schedule Trigger", "target": "HTTP Request"},
            {"source": "HTTP Request", "target": "Process Response"}
        ]
    },
    variables=[
        PromptVariable("workflow_name", "Name of the workflow", "External API Integration", True),
        PromptVariable("schedule_expression", "Cron expression for schedule", "0 */6 * * *", True),
        PromptVariable("api_url", "URL of the external API to call", "https://api.example.com/data", True),
        PromptVariable(
            "processing_code",
            "JavaScript code to process the API response",
            "// Example: Extract and transform specific fields\n"
            "const processedData = data.items ? data.items.map(item => ({\n"
            "  id: item.id,\n"
            "  name: item.name,\n"
            "  status: item.status || \"pending\"\n"
            "})) : [];\n\n"
            "data.processedItems = processedData;\n"
            "data.processedAt = new Date().toISOString();",
            True
        ),
    ]
)

PROMPTS: dict[str, WorkflowPrompt] = {
    prompt.id: prompt
    for prompt in (SCHEDULE_WORKFLOW, HTTP_WEBHOOK_WORKFLOW, DATA_TRANSFORMATION_WORKFLOW, INTEGRATION_WORKFLOW)
}


def get_all_prompts() -> list[WorkflowPrompt]:
    return list(PROMPTS.values())


def get_prompt(prompt_id: str) -> WorkflowPrompt:
    try:
        return PROMPTS[prompt_id]
    except KeyError:
        raise PromptNotFoundError(f"Prompt with id {prompt_id} not found") from None


def _substitute(value: Any, prompt: WorkflowPrompt, variables: dict[str, str]) -> Any:
    if isinstance(value, str):
        def replace(match: re.Match) -> str:
            name = match.group(1)
            variable = prompt.variable(name)
            return variables.get(name) or (variable.default if variable else None) or match.group(0)
        return PLACEHOLDER.sub(replace, value)
    if isinstance(value, list):
        return [_substitute(item, prompt, variables) for item in value]
    if isinstance(value, dict):
        return {key: _substitute(item, prompt, variables) for key, item in value.items()}
    return value


def fill_prompt_template(prompt_id: str, variables: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Fill a prompt template's placeholders.

    Each ``{name}`` placeholder takes the supplied value, else the variable's
    default; placeholders with neither are left as they are.

    Raises:
        PromptNotFoundError: unknown ``prompt_id``
        ValueError: a required variable has no value and no default
    """
    prompt = get_prompt(prompt_id)
    variables = variables or {}

    for variable in prompt.variables:
        if variable.required and not variables.get(variable.name) and not variable.default:
            raise ValueError(f"Required variable {variable.name} is missing")

    return _substitute(copy.deepcopy(prompt.template), prompt, variables)
