"""
Playwright Test Generator Agent

Turns a JIRA story into a reviewed pull request containing a generated
Playwright test. Planning is a fixed pipeline: each call returns the first
step without a successful history entry, so replanning after a failure
simply retries that step.
"""

from autoqa.core.domain.agent import ABORT_REASON_KEY, BaseAgent, ResultHandler
from autoqa.core.domain.events import ActionResult, ActionType, Plan
from autoqa.core.domain.models import AgentContext, AgentType
from autoqa.core.domain.planning import has_completed, repeated_failure_guard

DEFAULT_FRAMEWORK = "PLAYWRIGHT"

PIPELINE = (
    ActionType.FETCH_JIRA_STORY,
    ActionType.GENERATE_TEST_CODE,
    ActionType.WRITE_FILE,
    ActionType.REQUEST_APPROVAL,
    ActionType.CREATE_BRANCH,
    ActionType.COMMIT_CHANGES,
    ActionType.CREATE_PULL_REQUEST,
)


def branch_name_for(jira_key: str) -> str:
    return f"feature/agent-{jira_key.lower()}-test"


class TestGeneratorAgent(BaseAgent):
    """Generates a test for a story and opens a pull request for it."""

    __test__ = False

    agent_type = AgentType.PLAYWRIGHT_TEST_GENERATOR

    def plan(self, context: AgentContext) -> Plan:
        guard = repeated_failure_guard(context, requested_by="TestGeneratorAgent")
        if guard is not None:
            return guard

        for step in PIPELINE:
            if not has_completed(context, step):
                return self._plan_step(step, context)

        return Plan(
            action=ActionType.COMPLETE,
            reasoning="All steps completed",
        )

    def is_goal_achieved(self, context: AgentContext) -> bool:
        return has_completed(context, ActionType.CREATE_PULL_REQUEST)

    def result_handlers(self) -> dict[ActionType, ResultHandler]:
        return {ActionType.REQUEST_APPROVAL: self._on_request_approval}

    async def _on_request_approval(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        # A single story has nothing to move on to once a human must step in.
        if result.success and plan.parameters.get("manualReview"):
            context.state[ABORT_REASON_KEY] = (
                f"Manual review requested: {plan.parameters.get('reason', plan.reasoning)}"
            )

    def _plan_step(self, step: ActionType, context: AgentContext) -> Plan:
        params = context.goal.parameters
        jira_key = params.get("jiraKey", "")
        products = context.work_products

        if step == ActionType.FETCH_JIRA_STORY:
            return Plan(
                action=step,
                parameters={"jiraKey": jira_key},
                reasoning="Need JIRA story to generate test",
            )
        if step == ActionType.GENERATE_TEST_CODE:
            return Plan(
                action=step,
                parameters={
                    "jiraKey": jira_key,
                    "framework": params.get("framework", DEFAULT_FRAMEWORK),
                },
                reasoning="Generate test code using AI based on JIRA story",
                confidence=0.85,
            )
        if step == ActionType.WRITE_FILE:
            return Plan(
                action=step,
                parameters={
                    "testCode": products.get("testCode"),
                    "testClassName": products.get("testClassName"),
                },
                reasoning="Write generated test to file",
            )
        if step == ActionType.REQUEST_APPROVAL:
            return Plan(
                action=step,
                parameters={
                    "testCode": products.get("testCode"),
                    "jiraKey": jira_key,
                    "requestedBy": "agent",
                },
                reasoning="Request approval before committing to Git",
            )
        if step == ActionType.CREATE_BRANCH:
            return Plan(
                action=step,
                parameters={"branchName": branch_name_for(jira_key)},
                reasoning="Create Git branch for changes",
            )
        if step == ActionType.COMMIT_CHANGES:
            return Plan(
                action=step,
                parameters={
                    "branchName": products.get("branchName", branch_name_for(jira_key)),
                    "commitMessage": f"feat: Add AI-generated test for {jira_key}",
                    "filePaths": [products.get("filePath")],
                },
                reasoning="Commit test file to Git",
            )
        return Plan(
            action=ActionType.CREATE_PULL_REQUEST,
            parameters={
                "branchName": products.get("branchName", branch_name_for(jira_key)),
                "title": f"[AI-Generated] Test for {jira_key}",
                "description": (
                    f"Automated test generated by AI agent for JIRA story {jira_key}"
                ),
            },
            reasoning="Create pull request for review",
        )
