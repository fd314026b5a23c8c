"""
AWS Lambda handler for the Talent Rebate Engine API.

This is the production entry point for AWS Lambda deployments.
For local development, use main.py (Flask app) instead.
"""

import base64
import json
import logging
import os

from rebates import Database, RebateService
from rebates.output import ResponseBuilder, json_default

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO"))

# Environment (dev, staging, prod)
ENVIRONMENT = os.environ.get("ENVIRONMENT", "dev")

# Initialize service (reused across warm invocations)
database = Database.from_env()
database.create_all()
service = RebateService(database)
output = ResponseBuilder()

# CORS headers for API Gateway
CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization,user-id",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
}


def _response(status_code: int, body) -> dict:
    return {"statusCode": status_code, "headers": CORS_HEADERS, "body": json.dumps(body, default=json_default)}


def lambda_handler(event, context):
    """
    Main Lambda entry point.

    Handles API Gateway events for:
    - GET /health
    - GET /api
    - GET|POST /rebates (dispatched by `action`)
    - OPTIONS (CORS preflight)
    """
    # Handle CORS preflight
    http_method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    if http_method == "OPTIONS":
        return {"statusCode": 200, "headers": CORS_HEADERS, "body": ""}

    # Get path (supports both REST API and HTTP API formats)
    path = event.get("path") or event.get("rawPath", "")

    # Route to appropriate handler
    if path == "/health" and http_method == "GET":
        return handle_health()
    elif path == "/api" and http_method == "GET":
        return handle_api_info()
    elif path == "/rebates" and http_method in ("GET", "POST"):
        return handle_rebates(event)
    else:
        return _response(404, output.error(f"Not found: {path}"))


def handle_health():
    """Health check endpoint."""
    return _response(200, {"status": "healthy", "environment": ENVIRONMENT})


def handle_api_info():
    """API information endpoint."""
    return _response(
        200,
        {
            "status": "ok",
            "message": "Talent Rebate Engine API",
            "version": "1.0",
            "environment": ENVIRONMENT,
            "runtime": "AWS Lambda",
            "endpoints": {"rebates": "/rebates [GET, POST]", "health": "/health [GET]"},
            "actions": sorted(service.actions),
        },
    )


def handle_rebates(event):
    """Dispatch a rebate action. Query parameters and JSON body are merged, body wins."""
    params = dict(event.get("queryStringParameters") or {})

    body = event.get("body") or ""
    if isinstance(body, str):
        if body:
            try:
                # Handle base64 encoded body (API Gateway)
                if event.get("isBase64Encoded"):
                    body = base64.b64decode(body).decode("utf-8")
                body = json.loads(body)
            except (ValueError, UnicodeDecodeError) as e:
                logger.error(f"JSON parse error: {str(e)}")
                return _response(400, output.error(f"Invalid JSON: {str(e)}"))
        else:
            body = {}

    if not isinstance(body, dict):
        return _response(400, output.error("Request body must be a JSON object"))
    params.update(body)

    action = params.pop("action", None)
    status_code, response_body = service.handle(action, params)
    if status_code == 200:
        logger.info(f"Action processed successfully: {action}")
    return _response(status_code, response_body)
