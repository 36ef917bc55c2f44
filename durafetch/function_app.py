"""Azure Functions entry point registering the durafetch HTTP routes."""

import azure.functions as func

from .ingress import http_start, http_status

app = func.FunctionApp(http_auth_level=func.AuthLevel.ANONYMOUS)

start_trigger = app.route(
    route="workflows/{workflowType}/start", methods=["GET", "POST"]
)(http_start)

status_trigger = app.route(route="workflows/instances/{instanceId}", methods=["GET"])(
    http_status
)
