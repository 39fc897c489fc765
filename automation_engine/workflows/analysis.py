"""Analysis functions backing the ``ai_analysis`` action.

Each analysis is a named async callable receiving the event context, the
user and an :class:`AnalysisOptions` set of flags.  The built-in analyses
derive their output from the user's denormalised activity properties; a
deployment wires model-backed implementations in through
:meth:`AnalysisRegistry.register`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from automation_engine.core.exceptions import UnknownAnalysisTypeError
from automation_engine.workflows.models import EventContext, UserContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisOptions:
    """Flags forwarded from the action config."""

    include_insights: bool = False
    include_recommendations: bool = False
    based_on_history: bool = False
    based_on_current_goal: bool = False

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> AnalysisOptions:
        return cls(
            include_insights=bool(config.get("includeInsights")),
            include_recommendations=bool(config.get("includeRecommendations")),
            based_on_history=bool(config.get("basedOnHistory")),
            based_on_current_goal=bool(config.get("basedOnCurrentGoal")),
        )


AnalysisFunction = Callable[
    [EventContext, UserContext | None, AnalysisOptions],
    Awaitable[dict[str, Any]],
]


def _props(user: UserContext | None) -> dict[str, Any]:
    return user.properties if user is not None else {}


async def weekly_progress(
    context: EventContext,
    user: UserContext | None,
    options: AnalysisOptions,
) -> dict[str, Any]:
    """Summarise the user's last week of activity."""
    props = _props(user)
    workouts = int(props.get("workoutsLastWeek") or 0)
    streak = int(props.get("currentStreak") or 0)

    insights: list[str] = []
    if options.include_insights:
        if workouts == 0:
            insights.append("No workouts were logged this week")
        else:
            insights.append(f"{workouts} workouts logged this week")
        if streak:
            insights.append(f"Current streak: {streak} days")

    recommendations: list[str] = []
    if options.include_recommendations:
        if workouts < 3:
            recommendations.append("Aim for at least three sessions next week")
        else:
            recommendations.append("Keep the current training frequency")

    return {
        "workoutsCompleted": workouts,
        "currentStreak": streak,
        "insights": insights,
        "recommendations": recommendations,
    }


async def workout_recommendation(
    context: EventContext,
    user: UserContext | None,
    options: AnalysisOptions,
) -> dict[str, Any]:
    """Suggest the next workout focus."""
    props = _props(user)
    last_focus = props.get("lastWorkoutFocus")
    if options.based_on_history and last_focus:
        focus = "lower_body" if last_focus == "upper_body" else "upper_body"
        reasoning = f"Alternating from your last session ({last_focus})"
    else:
        focus = "full_body"
        reasoning = "General recommendation for muscle balance"
    return {"suggestedFocus": focus, "reasoning": reasoning}


async def next_goal_suggestions(
    context: EventContext,
    user: UserContext | None,
    options: AnalysisOptions,
) -> dict[str, Any]:
    """Propose follow-up goals after a goal is achieved."""
    goal_type = context.event_data.get("goalType")
    if options.based_on_current_goal and goal_type:
        reasoning = f"Based on achieving your {goal_type} goal"
        suggestions = [{"type": goal_type, "goal": f"Progress your {goal_type} target by 10%"}]
    else:
        reasoning = "General progression recommendations"
        suggestions = [
            {"type": "strength", "goal": "Increase your main lift by 5%"},
            {"type": "endurance", "goal": "Add one cardio session per week"},
        ]
    return {"suggestions": suggestions, "reasoning": reasoning}


class AnalysisRegistry:
    """Name -> analysis function mapping.

    Args:
        include_defaults: Register the built-in analyses.
    """

    def __init__(self, include_defaults: bool = True) -> None:
        self._functions: dict[str, AnalysisFunction] = {}
        if include_defaults:
            self.register("weekly_progress", weekly_progress)
            self.register("workout_recommendation", workout_recommendation)
            self.register("next_goal_suggestions", next_goal_suggestions)

    def register(self, analysis_type: str, func: AnalysisFunction) -> None:
        self._functions[analysis_type] = func

    def names(self) -> list[str]:
        return sorted(self._functions)

    async def run(
        self,
        analysis_type: str,
        context: EventContext,
        user: UserContext | None,
        options: AnalysisOptions,
    ) -> dict[str, Any]:
        """Run a registered analysis.

        Raises:
            UnknownAnalysisTypeError: If *analysis_type* is not registered.
        """
        func = self._functions.get(analysis_type)
        if func is None:
            raise UnknownAnalysisTypeError(analysis_type)
        logger.info(
            "Running analysis %s",
            analysis_type,
            extra={"user_id": user.user_id if user else None},
        )
        return await func(context, user, options)
