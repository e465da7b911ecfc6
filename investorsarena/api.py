from __future__ import annotations

import json
import logging
from functools import wraps
from typing import Any, Callable

from django.http import HttpRequest, HttpResponse, JsonResponse

from .errors import ArenaError, InvalidRequest

logger = logging.getLogger(__name__)


def json_api(
    view_func: Callable[..., HttpResponse] | None = None,
    *,
    methods: tuple[str, ...] = ("GET",),
    auth: bool = True,
):
    """
    Wrap a JSON view: enforce the allowed methods and authentication, and render
    `ArenaError`s as `{"ok": false, "error", "reason", ...meta}` with their status code.

    Anything else is logged with its traceback and rendered as a generic 500.
    """

    def decorator(func: Callable[..., HttpResponse]) -> Callable[..., HttpResponse]:
        @wraps(func)
        def _wrapped(request: HttpRequest, *args, **kwargs):
            if request.method not in methods:
                return JsonResponse(
                    {"ok": False, "error": "Method not allowed.", "reason": "METHOD_NOT_ALLOWED"},
                    status=405,
                )
            user = getattr(request, "user", None)
            if auth and (not user or not user.is_authenticated):
                return JsonResponse(
                    {"ok": False, "error": "Authentication required.", "reason": "NOT_AUTHENTICATED"},
                    status=401,
                )
            try:
                return func(request, *args, **kwargs)
            except ArenaError as e:
                return JsonResponse(e.as_dict(), status=e.status_code)
            except Exception:
                logger.exception("Unhandled error in %s %s", request.method, request.path)
                return JsonResponse(
                    {"ok": False, "error": "Something went wrong. Please try again.", "reason": "INTERNAL_ERROR"},
                    status=500,
                )

        return _wrapped

    if view_func is not None:
        return decorator(view_func)
    return decorator


def read_json_body(request: HttpRequest) -> dict[str, Any]:
    if not request.body:
        return {}
    try:
        payload = json.loads(request.body)
    except (TypeError, ValueError):
        raise InvalidRequest("Request body must be valid JSON.")
    if not isinstance(payload, dict):
        raise InvalidRequest("Request body must be a JSON object.")
    return payload


def form_errors(form) -> dict[str, list[str]]:
    return {field: [str(e) for e in errors] for field, errors in form.errors.items()}


def require_valid(form):
    """Return the form's cleaned data, or raise InvalidRequest carrying its field errors."""
    if not form.is_valid():
        errors = form_errors(form)
        first = next(iter(errors.values()), ["Invalid request."])[0]
        raise InvalidRequest(first, meta={"fields": errors})
    return form.cleaned_data
