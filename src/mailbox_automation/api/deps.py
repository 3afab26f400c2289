"""Request dependencies shared by the API routers."""

from __future__ import annotations

from fastapi import Request

from mailbox_automation.exceptions import NotAuthenticated
from mailbox_automation.jobs import JobService
from mailbox_automation.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_service(request: Request) -> JobService:
    return get_runtime(request).service


def get_owner(request: Request) -> str:
    """Mailbox identity set by the upstream auth layer."""

    header = get_runtime(request).settings.owner_header
    owner = (request.headers.get(header) or "").strip().lower()
    if not owner:
        raise NotAuthenticated(f"Missing {header} header")
    return owner
