"""HTTP starter and status handlers (Azure Functions programming model)."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import azure.functions as func

from .client import STATUS_PATH, WorkflowClient, build_client
from .contracts import PendingStatus, WorkflowInstance, WorkflowResult
from .errors import InstanceNotFoundError, UnknownWorkflowError

logger = logging.getLogger(__name__)

_client: Optional[WorkflowClient] = None


async def get_client() -> WorkflowClient:
    """Return the process-wide client, recovering running workflows on first use."""
    global _client
    if _client is None:
        _client = build_client()
        await _client.host.recover()
    return _client


def set_client(client: Optional[WorkflowClient]) -> None:
    global _client
    _client = client


def _json_response(payload: Any, status_code: int, **headers: str) -> func.HttpResponse:
    return func.HttpResponse(
        body=json.dumps(payload),
        status_code=status_code,
        mimetype="application/json",
        headers=headers or None,
    )


def _error(message: str, status_code: int) -> func.HttpResponse:
    return _json_response({"error": message}, status_code)


def _base_url(req: func.HttpRequest) -> str:
    return req.url.split("/workflows/", 1)[0]


def _result_payload(result: WorkflowResult) -> dict[str, Any]:
    return {"statusCode": result.status_code, "content": result.content}


def _instance_payload(instance: WorkflowInstance) -> dict[str, Any]:
    return {
        "instanceId": instance.instance_id,
        "workflowType": instance.workflow_type,
        "status": instance.status.value,
        "createdAt": instance.created_at.isoformat(),
        "wakeAt": instance.wake_at.isoformat() if instance.wake_at else None,
        "result": _result_payload(instance.result) if instance.result else None,
        "attempts": [
            {
                "attemptNumber": a.attempt_number,
                "statusCode": a.status_code,
                "error": a.error,
                "timestamp": a.timestamp.isoformat(),
            }
            for a in instance.attempts
        ],
    }


def _check_status_response(
    req: func.HttpRequest, client: WorkflowClient, pending: PendingStatus
) -> func.HttpResponse:
    status_url = client.status_url(pending.instance_id, base_url=_base_url(req))
    return _json_response(
        {
            "instanceId": pending.instance_id,
            "status": pending.status.value,
            "statusUrl": status_url,
        },
        202,
        Location=status_url,
    )


async def http_start(req: func.HttpRequest) -> func.HttpResponse:
    """Start a workflow; wait for its result when ``?wait=<seconds>`` is given.

    Invoke: GET/POST /api/workflows/{workflowType}/start[?wait=60]
    Returns 200 with ``{statusCode, content}`` if the workflow finished within
    the window, otherwise 202 with ``{instanceId, statusUrl}``.
    """
    client = await get_client()
    workflow_type = req.route_params.get("workflowType", "")

    wait: Optional[float] = None
    raw_wait = req.params.get("wait")
    if raw_wait is not None:
        try:
            wait = float(raw_wait)
        except ValueError:
            return _error(f"Invalid wait value: {raw_wait!r}", 400)
        if wait < 0:
            return _error("wait must not be negative", 400)

    try:
        instance_id, outcome = await client.start_and_wait(workflow_type, wait=wait)
    except UnknownWorkflowError as e:
        return _error(str(e), 404)

    logger.info(f"Started {workflow_type} orchestration. InstanceId = {instance_id}")
    if isinstance(outcome, WorkflowResult):
        return _json_response(_result_payload(outcome), 200)
    return _check_status_response(req, client, outcome)


async def http_status(req: func.HttpRequest) -> func.HttpResponse:
    """Point-in-time status of one instance.

    Invoke: GET /api/workflows/instances/{instanceId}
    """
    client = await get_client()
    instance_id = req.route_params.get("instanceId", "")
    try:
        instance = await client.get_status(instance_id)
    except InstanceNotFoundError as e:
        return _error(str(e), 404)
    return _json_response(_instance_payload(instance), 200)


__all__ = ["STATUS_PATH", "get_client", "set_client", "http_start", "http_status"]
