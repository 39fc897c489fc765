"""Pre-built workflow templates.

Each template is a workflow blueprint plus the dot paths a caller may
override when instantiating it (see :meth:`WorkflowTemplate.instantiate`).

Four templates are provided:

* **Welcome New User** -- On ``user_registered`` sends the welcome email and
  records that it was sent.
* **Weekly Progress Report** -- Mondays at 9 AM, for users who trained last
  week, runs the weekly progress analysis and emails the report.
* **Inactive User Re-engagement** -- Daily at 10 AM, for users inactive
  between 7 and 30 days, sends a comeback email and a workout suggestion.
* **Goal Achievement Celebration** -- On ``goal_achieved`` congratulates the
  user, records the achievement and suggests the next goal.
"""

from automation_engine.workflows.models import WorkflowTemplate


def get_prebuilt_templates() -> list[WorkflowTemplate]:
    """Return every pre-built workflow template."""
    return [
        _welcome_new_user(),
        _weekly_progress_report(),
        _inactive_user_reengagement(),
        _goal_achievement_celebration(),
    ]


def get_prebuilt_template(template_id: str) -> WorkflowTemplate | None:
    """Look up a pre-built template by id."""
    return next((t for t in get_prebuilt_templates() if t.id == template_id), None)


# ---------------------------------------------------------------------------
# Individual builders
# ---------------------------------------------------------------------------


def _welcome_new_user() -> WorkflowTemplate:
    """Build the Welcome New User template."""
    return WorkflowTemplate(
        id="welcome-new-user",
        name="Welcome New User",
        description="Send welcome email and setup guidance to new users",
        category="user_engagement",
        workflow={
            "name": "Welcome New User",
            "description": "Automated onboarding for new users",
            "enabled": True,
            "trigger": {"type": "event", "config": {"eventType": "user_registered"}},
            "actions": [
                {
                    "id": "send-welcome-email",
                    "type": "email",
                    "config": {"template": "welcome", "personalizedSubject": True},
                },
                {
                    "id": "track-registration",
                    "type": "database",
                    "config": {
                        "table": "user_events",
                        "action": "insert",
                        "data": {
                            "event_type": "welcome_email_sent",
                            "user_id": "{{user.userId}}",
                            "metadata": {"source": "automation"},
                        },
                    },
                },
            ],
        },
        configurable=["actions.0.config.template", "actions.0.config.personalizedSubject"],
    )


def _weekly_progress_report() -> WorkflowTemplate:
    """Build the Weekly Progress Report template."""
    return WorkflowTemplate(
        id="weekly-progress-report",
        name="Weekly Progress Report",
        description="Generate and send weekly progress summaries to active users",
        category="analytics",
        workflow={
            "name": "Weekly Progress Report",
            "description": "Automated weekly progress analysis and email",
            "enabled": True,
            "trigger": {"type": "schedule", "config": {"cron": "0 9 * * 1"}},
            "conditions": [
                {
                    "type": "user_property",
                    "operator": "greater_than",
                    "field": "workouts_last_week",
                    "value": 0,
                }
            ],
            "actions": [
                {
                    "id": "generate-progress-analysis",
                    "type": "ai_analysis",
                    "config": {
                        "analysisType": "weekly_progress",
                        "includeInsights": True,
                        "includeRecommendations": True,
                    },
                },
                {
                    "id": "send-progress-email",
                    "type": "email",
                    "config": {"template": "weekly-progress", "includeCharts": True},
                },
            ],
        },
        configurable=["trigger.config.cron", "conditions.0.value", "actions.1.config.template"],
    )


def _inactive_user_reengagement() -> WorkflowTemplate:
    """Build the Inactive User Re-engagement template."""
    return WorkflowTemplate(
        id="inactive-user-reengagement",
        name="Inactive User Re-engagement",
        description="Re-engage users who haven't logged workouts in 7 days",
        category="retention",
        workflow={
            "name": "Inactive User Re-engagement",
            "description": "Automated re-engagement for inactive users",
            "enabled": True,
            "trigger": {"type": "schedule", "config": {"cron": "0 10 * * *"}},
            "conditions": [
                {
                    "type": "user_property",
                    "operator": "greater_than",
                    "field": "days_since_last_workout",
                    "value": 7,
                },
                {
                    "type": "user_property",
                    "operator": "less_than",
                    "field": "days_since_last_workout",
                    "value": 30,
                    "logic": "and",
                },
            ],
            "actions": [
                {
                    "id": "send-motivation-email",
                    "type": "email",
                    "config": {"template": "comeback-motivation", "personalizeContent": True},
                },
                {
                    "id": "offer-workout-suggestion",
                    "type": "ai_analysis",
                    "config": {"analysisType": "workout_recommendation", "basedOnHistory": True},
                },
            ],
        },
        configurable=["conditions.0.value", "conditions.1.value", "actions.0.config.template"],
    )


def _goal_achievement_celebration() -> WorkflowTemplate:
    """Build the Goal Achievement Celebration template."""
    return WorkflowTemplate(
        id="goal-achievement-celebration",
        name="Goal Achievement Celebration",
        description="Celebrate when users achieve their fitness goals",
        category="user_engagement",
        workflow={
            "name": "Goal Achievement Celebration",
            "description": "Automated celebration for goal achievements",
            "enabled": True,
            "trigger": {"type": "event", "config": {"eventType": "goal_achieved"}},
            "actions": [
                {
                    "id": "send-congratulations-email",
                    "type": "email",
                    "config": {"template": "goal-achieved", "includeAchievementBadge": True},
                },
                {
                    "id": "update-user-achievements",
                    "type": "database",
                    "config": {
                        "table": "user_achievements",
                        "action": "insert",
                        "data": {
                            "user_id": "{{user.userId}}",
                            "achievement_type": "{{event.goalType}}",
                            "achieved_at": "{{event.timestamp}}",
                        },
                    },
                },
                {
                    "id": "generate-new-goal-suggestions",
                    "type": "ai_analysis",
                    "config": {
                        "analysisType": "next_goal_suggestions",
                        "basedOnCurrentGoal": True,
                    },
                },
            ],
        },
        configurable=[
            "actions.0.config.template",
            "actions.0.config.includeAchievementBadge",
        ],
    )
