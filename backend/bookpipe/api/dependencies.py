"""
FastAPI dependencies shared by the v1 routers.

The JobQueueHandle lives on app.state: create_app() stores the handle it was
given (tests) or the lifespan builds one from settings (production).
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bookpipe.db.session import get_db
from bookpipe.workers.queue import JobQueueHandle


def get_job_queue(request: Request) -> JobQueueHandle:
    return request.app.state.job_queue


DBSession = Annotated[AsyncSession,   Depends(get_db)]
JobQueue  = Annotated[JobQueueHandle, Depends(get_job_queue)]
