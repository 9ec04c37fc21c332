"""
Code Context API Endpoints

Collection runs and context management for issue-tracker tasks.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from taskscope.api.deps import get_context_service
from taskscope.context_collection.models import (
    CodeContext,
    CodeContextCreate,
    CodeContextUpdate,
    ContextCollectionResult,
    FreshnessReport,
    TaskAnalysisInput,
    TaskType,
)
from taskscope.context_collection.services import (
    ContextCollectionError,
    ContextNotFoundError,
    ContextToolService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contexts", tags=["contexts"])


@router.post("/collect", response_model=ContextCollectionResult)
async def collect_contexts(
    task: TaskAnalysisInput,
    service: ContextToolService = Depends(get_context_service),
):
    """
    Collect, rank and persist code contexts for a task.

    Bug tasks also return the stack traces found in their text.
    """
    try:
        return await service.collect(task)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ContextCollectionError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("", response_model=CodeContext, status_code=201)
def add_context(
    context: CodeContextCreate,
    service: ContextToolService = Depends(get_context_service),
):
    """Add a manual context (default relevance 0.8)."""
    return service.add(context)


@router.patch("/item/{context_id}", response_model=CodeContext)
def update_context(
    context_id: str,
    changes: CodeContextUpdate,
    service: ContextToolService = Depends(get_context_service),
):
    """Patch a context; date_last_checked is always refreshed."""
    try:
        return service.update(context_id, changes)
    except ContextNotFoundError:
        raise HTTPException(status_code=404, detail=f"Context {context_id} not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/item/{context_id}", status_code=204)
def remove_context(
    context_id: str,
    service: ContextToolService = Depends(get_context_service),
):
    """Delete a context."""
    try:
        service.remove(context_id)
    except ContextNotFoundError:
        raise HTTPException(status_code=404, detail=f"Context {context_id} not found")


@router.get("/{task_id}", response_model=List[CodeContext])
def get_contexts(
    task_id: str,
    task_type: Optional[TaskType] = Query(default=None, description="Filter by task type"),
    service: ContextToolService = Depends(get_context_service),
):
    """Persisted contexts for a task, highest relevance first."""
    return service.get(task_id, task_type)


@router.get("/{task_id}/freshness", response_model=FreshnessReport)
def check_freshness(
    task_id: str,
    threshold_hours: float = Query(default=24, gt=0, description="Age after which a context is stale"),
    service: ContextToolService = Depends(get_context_service),
):
    """Split a task's contexts into fresh and stale; stale ones get flagged."""
    return service.check_freshness(task_id, threshold_hours)
