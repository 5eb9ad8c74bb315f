from __future__ import annotations

# =========================================
# functions_client.py
# Calls the serverless endpoints hosted by the admin portal
# =========================================

from concurrent.futures import Future, ThreadPoolExecutor

import requests
from flask import current_app

# Visit logging runs off the request thread
_visit_log_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="visit-log")


class FunctionError(RuntimeError):
    pass


def invoke_function(name: str, payload: dict, timeout: float | None = None) -> dict:
    """
    POST payload to FUNCTIONS_BASE_URL/<name> and return the JSON body.
    Raises FunctionError on transport errors, non-2xx answers or success=false.
    timeout defaults to FUNCTIONS_TIMEOUT.
    """
    cfg = current_app.config
    url = f"{cfg['FUNCTIONS_BASE_URL'].rstrip('/')}/{name}"
    headers = {"Content-Type": "application/json"}
    if cfg.get("FUNCTIONS_TOKEN"):
        headers["Authorization"] = f"Bearer {cfg['FUNCTIONS_TOKEN']}"
    if timeout is None:
        timeout = cfg.get("FUNCTIONS_TIMEOUT", 10.0)

    try:
        resp = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        raise FunctionError(f"{name} unreachable: {e}") from e

    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    if not resp.ok or body.get("success") is False:
        raise FunctionError(body.get("error") or f"{name} failed with status: {resp.status_code}")
    return body


def _post_visit(app, path: str) -> None:
    with app.app_context():
        try:
            invoke_function("log-visit", {"path": path}, timeout=app.config.get("VISIT_LOG_TIMEOUT", 2.0))
        except FunctionError as e:
            app.logger.warning("Visit logging failed: %s", e)


def log_visit(path: str) -> Future:
    """Fire-and-forget visit logging on a worker thread; failures are only logged."""
    app = current_app._get_current_object()
    return _visit_log_pool.submit(_post_visit, app, path)
