from fastapi import APIRouter, HTTPException, Query, Request
from typing import Optional, Dict, Any
import logging

from prunarr.api.schemas.rules import (
    RuleCreate, RuleUpdate, RuleResponse, RuleListResponse,
    PreviewResponse, ProposeResponse, RuleStats
)
from prunarr.exceptions import PrunarrError
from prunarr.worker.rules.engine import RuleMatcher

logger = logging.getLogger(__name__)

router = APIRouter()


def _validate(rule: Dict[str, Any]) -> None:
    """Compile the rule once so malformed conditions are rejected before saving"""
    RuleMatcher.from_rule(rule)


@router.get("/", response_model=RuleListResponse)
async def list_rules(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(50, ge=1, le=100, description="Items per page"),
    enabled: Optional[bool] = Query(None, description="Filter by enabled status"),
) -> RuleListResponse:
    """List all rules with pagination"""
    try:
        rules, total = await request.app.state.rule_store.list(page, per_page, enabled)
        return RuleListResponse(
            rules=[RuleResponse(**rule) for rule in rules],
            total=total,
            page=page,
            per_page=per_page
        )
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to list rules: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/", response_model=RuleResponse)
async def create_rule(rule: RuleCreate, request: Request) -> RuleResponse:
    """Create a deletion rule"""
    try:
        data = rule.model_dump(mode="json")
        _validate(data)
        return RuleResponse(**await request.app.state.rule_store.create(data))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to create rule: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/preview", response_model=PreviewResponse)
async def preview_unsaved_rule(rule: RuleCreate, request: Request) -> PreviewResponse:
    """Preview an unsaved rule against the current catalog"""
    try:
        data = rule.model_dump(mode="json")
        return PreviewResponse(**await request.app.state.rule_evaluator.preview_rule(data))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to preview rule: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/stats", response_model=RuleStats)
async def get_global_stats(request: Request) -> RuleStats:
    """Deletion statistics across all rules"""
    try:
        return RuleStats(**await request.app.state.pending_store.stats())
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to get rule stats: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(rule_id: str, request: Request) -> RuleResponse:
    """Get a specific rule by ID"""
    try:
        return RuleResponse(**await request.app.state.rule_store.get(rule_id))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to get rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.put("/{rule_id}", response_model=RuleResponse)
async def update_rule(rule_id: str, rule: RuleUpdate, request: Request) -> RuleResponse:
    """Update a rule; omitted fields keep their value"""
    try:
        store = request.app.state.rule_store
        updates = rule.model_dump(mode="json", exclude_unset=True)
        merged = {**await store.get(rule_id), **{k: v for k, v in updates.items() if v is not None}}
        _validate(merged)
        return RuleResponse(**await store.update(rule_id, updates))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to update rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.delete("/{rule_id}")
async def delete_rule(rule_id: str, request: Request) -> Dict[str, Any]:
    """Delete a rule"""
    try:
        await request.app.state.rule_store.delete(rule_id)
        return {"message": "Rule deleted successfully", "id": rule_id}
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to delete rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{rule_id}/duplicate", response_model=RuleResponse)
async def duplicate_rule(rule_id: str, request: Request) -> RuleResponse:
    """Duplicate an existing rule (the copy starts disabled)"""
    try:
        return RuleResponse(**await request.app.state.rule_store.duplicate(rule_id))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to duplicate rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{rule_id}/enable", response_model=RuleResponse)
async def enable_rule(rule_id: str, request: Request) -> RuleResponse:
    """Enable a rule"""
    try:
        return RuleResponse(**await request.app.state.rule_store.set_enabled(rule_id, True))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to enable rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{rule_id}/disable", response_model=RuleResponse)
async def disable_rule(rule_id: str, request: Request) -> RuleResponse:
    """Disable a rule"""
    try:
        return RuleResponse(**await request.app.state.rule_store.set_enabled(rule_id, False))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to disable rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{rule_id}/preview", response_model=PreviewResponse)
async def preview_rule(rule_id: str, request: Request) -> PreviewResponse:
    """Show what a saved rule would match, without persisting anything"""
    try:
        return PreviewResponse(**await request.app.state.rule_evaluator.preview(rule_id))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to preview rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{rule_id}/run", response_model=ProposeResponse)
async def run_rule(rule_id: str, request: Request) -> ProposeResponse:
    """Propose pending deletions for every current match of the rule"""
    try:
        return ProposeResponse(**await request.app.state.rule_evaluator.propose(rule_id))
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to run rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{rule_id}/stats", response_model=RuleStats)
async def get_rule_stats(rule_id: str, request: Request) -> RuleStats:
    """Deletion statistics for one rule"""
    try:
        rule = await request.app.state.rule_store.get(rule_id)
        stats = await request.app.state.pending_store.stats(rule_id)
        return RuleStats(**stats, rule_name=rule["name"], last_run=rule["last_run"])
    except PrunarrError:
        raise
    except Exception as e:
        logger.error(f"Failed to get stats for rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
