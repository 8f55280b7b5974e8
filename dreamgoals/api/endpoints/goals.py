"""
Goals API Endpoints Module
Thin controllers over GoalLifecycleManager
"""
from typing import Any, Dict, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from dreamgoals.exceptions import CODE_TO_STATUS
from dreamgoals.goal_lifecycle_service import GoalLifecycleManager
from dreamgoals.schemas import (
    Dream,
    Goal,
    ItemType,
    OperationResult,
    WeeklyCompletionLog,
    WeeklyGoalInstance,
    WeeklyGoalTemplate,
)

router = APIRouter(prefix="/users/{user_id}", tags=["goals"])


def map_result_to_http(result: OperationResult) -> HTTPException:
    """Failed OperationResult -> HTTPException with the structured error payload"""
    error = result.error
    status_code = CODE_TO_STATUS.get(error.code, 500) if error else 500
    return HTTPException(
        status_code=status_code,
        detail={"error": error.model_dump() if error else {"code": "Unknown", "message": "unknown error"}},
    )


def respond(result: OperationResult) -> Dict[str, Any]:
    if not result.success:
        raise map_result_to_http(result)
    data = result.data
    if isinstance(data, dict):
        # plain summaries from the manager use snake_case keys
        data = {to_camel(key): value for key, value in data.items()}
    return {"success": True, "data": jsonable_encoder(data, by_alias=True, exclude_none=True)}


async def get_manager(user_id: str, request: Request) -> GoalLifecycleManager:
    """Per-user manager, loaded from the item store on first use"""
    return await request.app.state.managers.get(user_id)


# =============================================================================
# State
# =============================================================================

@router.get("/state")
async def get_state(manager: GoalLifecycleManager = Depends(get_manager)):
    """Dreams, templates, this week's instances and the score"""
    state = manager.state
    return {
        "success": True,
        "data": jsonable_encoder({
            "dreams": state.dreams,
            "weeklyGoalTemplates": state.templates,
            "currentWeek": {"weekId": state.week_id, "goals": state.instances},
            "score": state.score,
            "scoringHistory": state.scoring_history,
        }, by_alias=True, exclude_none=True),
    }


# =============================================================================
# Dreams
# =============================================================================

@router.post("/dreams", status_code=201)
async def add_dream(dream: Dream, manager: GoalLifecycleManager = Depends(get_manager)):
    return respond(await manager.add_dream(dream))


@router.put("/dreams/{dream_id}")
async def update_dream(dream_id: str, dream: Dream, manager: GoalLifecycleManager = Depends(get_manager)):
    if dream.id != dream_id:
        raise HTTPException(status_code=400, detail="Dream id does not match the path")
    return respond(await manager.update_dream(dream))


@router.delete("/dreams/{dream_id}")
async def delete_dream(dream_id: str, manager: GoalLifecycleManager = Depends(get_manager)):
    return respond(await manager.delete_dream(dream_id))


# =============================================================================
# Dream goals
# =============================================================================

@router.post("/dreams/{dream_id}/goals", status_code=201)
async def add_goal(dream_id: str, req: dict, manager: GoalLifecycleManager = Depends(get_manager)):
    """Body is validated by the manager so bad input comes back as GoalValidationError"""
    return respond(await manager.add_goal(dream_id, req))


@router.put("/dreams/{dream_id}/goals/{goal_id}")
async def update_goal(
    dream_id: str,
    goal_id: str,
    goal: Goal,
    manager: GoalLifecycleManager = Depends(get_manager),
):
    if goal.id != goal_id:
        raise HTTPException(status_code=400, detail="Goal id does not match the path")
    return respond(await manager.update_goal(dream_id, goal))


@router.delete("/dreams/{dream_id}/goals/{goal_id}")
async def delete_goal(dream_id: str, goal_id: str, manager: GoalLifecycleManager = Depends(get_manager)):
    return respond(await manager.delete_goal(dream_id, goal_id))


@router.post("/goals/{goal_id}/week-log")
async def log_weekly_completion(
    goal_id: str,
    entry: WeeklyCompletionLog,
    manager: GoalLifecycleManager = Depends(get_manager),
):
    return respond(await manager.log_weekly_completion(goal_id, entry.iso_week, entry.completed))


# =============================================================================
# Weekly goals (current week)
# =============================================================================

def parse_weekly_goal(body: dict) -> Union[WeeklyGoalInstance, WeeklyGoalTemplate]:
    """The `type` field picks template vs instance"""
    model = WeeklyGoalTemplate if body.get("type") == ItemType.WEEKLY_GOAL_TEMPLATE.value else WeeklyGoalInstance
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=jsonable_encoder(e.errors(include_url=False)))


@router.post("/weekly-goals", status_code=201)
async def add_weekly_goal(body: dict, manager: GoalLifecycleManager = Depends(get_manager)):
    return respond(await manager.add_weekly_goal(parse_weekly_goal(body)))


@router.put("/weekly-goals/{goal_id}")
async def update_weekly_goal(goal_id: str, body: dict, manager: GoalLifecycleManager = Depends(get_manager)):
    goal = parse_weekly_goal(body)
    if goal.id != goal_id:
        raise HTTPException(status_code=400, detail="Goal id does not match the path")
    return respond(await manager.update_weekly_goal(goal))


@router.post("/weekly-goals/{goal_id}/toggle")
async def toggle_weekly_goal(goal_id: str, manager: GoalLifecycleManager = Depends(get_manager)):
    return respond(await manager.toggle_weekly_goal(goal_id))


@router.post("/weekly-goals/{goal_id}/increment")
async def increment_goal(goal_id: str, manager: GoalLifecycleManager = Depends(get_manager)):
    return respond(await manager.increment_goal(goal_id))


@router.post("/weekly-goals/{goal_id}/decrement")
async def decrement_goal(goal_id: str, manager: GoalLifecycleManager = Depends(get_manager)):
    return respond(await manager.decrement_goal(goal_id))


@router.post("/weekly-goals/{goal_id}/skip")
async def skip_goal(goal_id: str, manager: GoalLifecycleManager = Depends(get_manager)):
    return respond(await manager.skip_goal(goal_id))


@router.delete("/weekly-goals/{goal_id}")
async def delete_weekly_goal(goal_id: str, manager: GoalLifecycleManager = Depends(get_manager)):
    return respond(await manager.delete_weekly_goal(goal_id))


@router.post("/weekly-goals/refresh-weeks-remaining")
async def refresh_weeks_remaining(manager: GoalLifecycleManager = Depends(get_manager)):
    return respond(await manager.refresh_weeks_remaining())
