"""
Error types for the n8n MCP server

Upstream HTTP failures are mapped to human-readable guidance through a
rule table rather than scattered conditionals. The n8n API does not return
structured error codes for the common failure cases, so most rules match on
the response message.
"""
import re
from dataclasses import dataclass
from typing import Optional, Union


class N8NError(Exception):
    """Base exception for the n8n MCP server"""


class WorkflowValidationError(N8NError, ValueError):
    """Client-supplied workflow data is malformed"""


class ConfigurationError(N8NError):
    """Configuration is missing or invalid"""


class EnvironmentNotFoundError(ConfigurationError, ValueError):
    """Requested environment is not declared in the configuration"""


class ExecutionTimeoutError(N8NError):
    """Execution did not finish within the wait budget"""


class PromptNotFoundError(N8NError, KeyError):
    """Unknown prompt template id"""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class N8NApiError(N8NError):
    """An n8n REST call failed"""

    def __init__(
        self,
        message: str,
        context: str,
        status_code: Optional[int] = None,
        guidance: Optional[str] = None,
        response_body: Optional[str] = None
    ):
        super().__init__(message)
        self.context = context
        self.status_code = status_code
        self.guidance = guidance
        self.response_body = response_body


@dataclass(frozen=True)
class ErrorRule:
    """Maps an upstream (status, message pattern) pair to guidance.

    ``status`` may be a single code, a ``range`` or ``None`` (any status).
    ``pattern`` is a case-insensitive regular expression or ``None`` (any
    message). Both must match for the rule to apply.
    """
    guidance: str
    status: Union[int, range, None] = None
    pattern: Optional[str] = None

    def matches(self, status: Optional[int], message: str) -> bool:
        if self.status is not None:
            if status is None:
                return False
            if isinstance(self.status, range):
                if status not in self.status:
                    return False
            elif status != self.status:
                return False
        if self.pattern is not None and not re.search(self.pattern, message, re.IGNORECASE):
            return False
        return True


# First match wins: message rules come before status-only rules.
ERROR_RULES: list[ErrorRule] = [
    ErrorRule(
        status=400,
        pattern=r"property ?values",
        guidance=(
            "The n8n API rejected the Set node parameters. Set nodes need their values "
            "in the propertyValue format; simplify the Set node or recreate it with "
            "plain name/value pairs."
        ),
    ),
    ErrorRule(
        pattern=r"already exists",
        guidance="An item with this name already exists. Choose a different name.",
    ),
    ErrorRule(
        pattern=r"has no node to start the workflow|trigger, poller or webhook",
        guidance=(
            "This workflow requires at least one trigger node (Schedule, Webhook or "
            "another event-based node) before it can be activated."
        ),
    ),
    ErrorRule(
        status=401,
        guidance="Authentication failed. Check the n8n API key for this environment.",
    ),
    ErrorRule(
        status=403,
        guidance="Access denied. The API key does not have permission for this operation.",
    ),
    ErrorRule(
        status=404,
        guidance="The requested item was not found on the n8n instance.",
    ),
    ErrorRule(
        status=413,
        guidance="The request payload is too large. Split the workflow or reduce node parameters.",
    ),
    ErrorRule(
        status=429,
        guidance="Rate limit exceeded on the n8n instance. Wait before sending more requests.",
    ),
    ErrorRule(
        status=range(500, 600),
        guidance="The n8n server encountered an internal error. Try again later or check the server logs.",
    ),
]


def classify_error(
    context: str,
    status: Optional[int],
    message: str,
    rules: Optional[list[ErrorRule]] = None,
    response_body: Optional[str] = None
) -> N8NApiError:
    """Build an N8NApiError for a failed call, attaching guidance when a rule matches."""
    for rule in ERROR_RULES if rules is None else rules:
        if rule.matches(status, message):
            text = f"{rule.guidance} (while {context}: {message})" if message else f"{rule.guidance} (while {context})"
            return N8NApiError(
                text,
                context=context,
                status_code=status,
                guidance=rule.guidance,
                response_body=response_body,
            )
    return N8NApiError(
        f"API error {context}: {message}",
        context=context,
        status_code=status,
        response_body=response_body,
    )
