"""
Self-Healing Agent

Repairs tests whose locators no longer match the page. For each test the
agent extracts the broken locator from the failure, then tries replacement
candidates from two sources in priority order:

1. The element registry's known-good alternatives
2. AI discovery against freshly captured page HTML

Each candidate is applied and verified by running the test; a failed
verification moves the source's cursor to the next candidate. When both
sources run dry the test is flagged for manual review. A verified fix goes
through the finalize pipeline: update registry, write file, branch, commit,
approval, pull request.
"""

from typing import Any

from autoqa.core.agents.locators import (
    build_fixed_test_code,
    infer_page_url,
    sanitize_name,
)
from autoqa.core.agents.worklist import TestWorkListAgent
from autoqa.core.domain.agent import ResultHandler
from autoqa.core.domain.events import ActionResult, ActionType, Plan
from autoqa.core.domain.models import AgentContext, AgentType
from autoqa.core.domain.planning import (
    TEST_START_MARKER,
    has_completed,
    last_entry,
    manual_review_plan,
    repeated_failure_guard,
)

FINALIZE_STEPS = (
    ActionType.UPDATE_ELEMENT_REGISTRY,
    ActionType.WRITE_FILE,
    ActionType.CREATE_BRANCH,
    ActionType.COMMIT_CHANGES,
    ActionType.REQUEST_APPROVAL,
    ActionType.CREATE_PULL_REQUEST,
)

VERIFY_RUNS = 3
DEFAULT_ERROR_MESSAGE = "Element not found"


class SelfHealingAgent(TestWorkListAgent):
    """Heals broken locators using registry alternatives, then AI discovery."""

    agent_type = AgentType.SELF_HEALING_TEST_FIXER
    state_prefix = "heal."
    requested_by = "SelfHealingAgent"

    def reset_test_state(self, context: AgentContext) -> None:
        super().reset_test_state(context)
        self.put(context, "failureAnalysis", {})
        self.put(context, "alternatives", None)
        self.put(context, "altIndex", 0)
        self.put(context, "aiSuggestions", None)
        self.put(context, "aiIndex", 0)
        self.put(context, "renderedFilePath", None)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, context: AgentContext) -> Plan:
        guard = repeated_failure_guard(context, requested_by=self.requested_by)
        if guard is not None:
            return guard

        if self.all_processed(context):
            return self.complete_plan(context, totalFixed=self.get(context, "successfullyFixed", 0))

        if not self.get(context, "failureAnalysis"):
            return self._plan_extract(context)

        alternatives = self.get(context, "alternatives")
        if alternatives is None:
            return self._plan_query_registry(context)

        if self.fix_verified(context):
            return self._plan_finalize(context)

        alt_index = self.get(context, "altIndex", 0)
        if alt_index < len(alternatives):
            if self._candidate_applied(context):
                return self._plan_verify(context)
            candidate = alternatives[alt_index]
            return self._plan_apply(
                context,
                candidate.get("locator", ""),
                reasoning=(
                    f"Trying registry alternative {alt_index + 1}/{len(alternatives)}: "
                    f"{candidate.get('locator')}"
                ),
            )

        # Registry exhausted: fall back to AI discovery.
        if not has_completed(context, ActionType.READ_FILE, since=TEST_START_MARKER):
            return self._plan_capture_html(context)

        suggestions = self.get(context, "aiSuggestions")
        if suggestions is None:
            return self._plan_discover(context)

        ai_index = self.get(context, "aiIndex", 0)
        if ai_index < len(suggestions):
            if self._candidate_applied(context):
                return self._plan_verify(context)
            suggestion = suggestions[ai_index]
            return self._plan_apply(
                context,
                suggestion.get("locator", ""),
                reasoning=(
                    f"Trying AI suggestion {ai_index + 1}/{len(suggestions)}: "
                    f"{suggestion.get('locator')}"
                ),
            )

        return self._plan_manual_review(
            context,
            reasoning=(
                "AI discovery returned no suggestions"
                if not suggestions
                else "Both registry alternatives and AI suggestions failed"
            ),
        )

    @staticmethod
    def _candidate_applied(context: AgentContext) -> bool:
        entry = last_entry(context)
        return (
            entry is not None
            and entry.action_type == ActionType.MODIFY_FILE
            and entry.success
        )

    def _working_locator(self, context: AgentContext) -> tuple[str | None, str]:
        """Locator and element name of the candidate that passed verification."""
        alternatives = self.get(context, "alternatives") or []
        alt_index = self.get(context, "altIndex", 0)
        if alt_index < len(alternatives):
            alt = alternatives[alt_index]
            return alt.get("locator"), alt.get("elementName") or "registry-element"

        suggestions = self.get(context, "aiSuggestions") or []
        ai_index = self.get(context, "aiIndex", 0)
        if ai_index < len(suggestions):
            purpose = self.get(context, "failureAnalysis", {}).get("elementPurpose") or "element"
            return (
                suggestions[ai_index].get("locator"),
                f"ai-discovered-{sanitize_name(str(purpose)).lower()}",
            )
        return None, "fallback-element"

    def _fixed_content(self, context: AgentContext, locator: str | None) -> str:
        return build_fixed_test_code(
            self.original_content(context),
            self.get(context, "failureAnalysis", {}).get("brokenLocator"),
            locator or "",
        )

    def _plan_extract(self, context: AgentContext) -> Plan:
        test = self.current_test(context)
        error_message = (
            context.goal.parameters.get("errorMessage")
            or test.get("last_error")
            or DEFAULT_ERROR_MESSAGE
        )
        return Plan(
            action=ActionType.EXTRACT_BROKEN_LOCATOR,
            parameters={
                "errorMessage": error_message,
                "testContent": self.original_content(context),
            },
            reasoning="Extracting broken locator from test failure",
        )

    def _plan_query_registry(self, context: AgentContext) -> Plan:
        analysis = self.get(context, "failureAnalysis", {})
        return Plan(
            action=ActionType.QUERY_ELEMENT_REGISTRY,
            parameters={
                "pageName": analysis.get("pageName", "unknown"),
                "elementPurpose": analysis.get("elementPurpose", "unknown"),
                "brokenLocator": analysis.get("brokenLocator"),
            },
            reasoning="Querying registry for alternative locators",
        )

    def _plan_apply(self, context: AgentContext, locator: str, reasoning: str) -> Plan:
        return Plan(
            action=ActionType.MODIFY_FILE,
            parameters={
                "testId": self.current_test(context).get("test_id"),
                "fixedTestCode": self._fixed_content(context, locator),
                "locator": locator,
            },
            reasoning=reasoning,
            confidence=0.7,
        )

    def _plan_verify(self, context: AgentContext) -> Plan:
        return Plan(
            action=ActionType.EXECUTE_TEST,
            parameters={
                "testId": self.current_test(context).get("test_id"),
                "runCount": VERIFY_RUNS,
            },
            reasoning="Verifying fix by running test",
        )

    def _plan_capture_html(self, context: AgentContext) -> Plan:
        page_url = infer_page_url(
            self.original_content(context),
            goal_url=context.goal.parameters.get("pageUrl"),
            failed_step_index=context.work_products.get("failedStepIndex"),
        )
        return Plan(
            action=ActionType.READ_FILE,
            parameters={"pageUrl": page_url, "selectorContext": "body"},
            reasoning="Capturing page HTML for AI analysis (registry had no matches)",
        )

    def _plan_discover(self, context: AgentContext) -> Plan:
        analysis = self.get(context, "failureAnalysis", {})
        parameters: dict[str, Any] = {
            "pageHtml": context.work_products.get("pageHtml"),
            "brokenLocator": analysis.get("brokenLocator"),
            "elementPurpose": analysis.get("elementPurpose"),
            "pageName": analysis.get("pageName"),
            "actionType": analysis.get("actionType"),
        }
        failed_locator = context.work_products.get("failedStepLocator")
        if failed_locator:
            parameters["originalLocator"] = failed_locator
        return Plan(
            action=ActionType.DISCOVER_LOCATOR,
            parameters=parameters,
            reasoning="Using AI to discover new locator from page HTML",
            confidence=0.8,
        )

    def _plan_manual_review(self, context: AgentContext, reasoning: str) -> Plan:
        test = self.current_test(context)
        return manual_review_plan(
            reasoning=f"{reasoning} - flagging for manual review",
            requested_by=self.requested_by,
            testCode=self.original_content(context),
            jiraKey=self.story_key(context, "LOCATOR-MANUAL"),
            testName=f"{test.get('name')} [NEEDS MANUAL REVIEW]",
            requestType="SELF_HEALING_MANUAL",
        )

    def _plan_finalize(self, context: AgentContext) -> Plan:
        step = next(
            (
                s
                for s in FINALIZE_STEPS
                if not has_completed(context, s, since=TEST_START_MARKER)
            ),
            None,
        )
        if step is None:
            return self.finalize_plan()

        test = self.current_test(context)
        name = test.get("name", "")
        story_key = self.story_key(context, "LOCATOR")
        branch_name = context.work_products.get("branchName") or (
            f"fix/locator-{sanitize_name(name)}"
        )
        working_locator, element_name = self._working_locator(context)

        if step == ActionType.UPDATE_ELEMENT_REGISTRY:
            analysis = self.get(context, "failureAnalysis", {})
            return Plan(
                action=step,
                parameters={
                    "pageName": analysis.get("pageName"),
                    "elementName": element_name,
                    "workingLocator": working_locator,
                    "brokenLocator": analysis.get("brokenLocator"),
                },
                reasoning="Updating registry with working locator",
            )
        if step == ActionType.WRITE_FILE:
            return Plan(
                action=step,
                parameters={
                    "testId": test.get("test_id"),
                    "testClassName": name,
                    "testCode": self._fixed_content(context, working_locator),
                },
                reasoning="Rendering fixed test before Git commit",
            )
        if step == ActionType.CREATE_BRANCH:
            return Plan(
                action=step,
                parameters={
                    "storyKey": story_key,
                    "branchName": f"fix/locator-{sanitize_name(name)}",
                },
                reasoning="Creating Git branch for locator fix",
            )
        if step == ActionType.COMMIT_CHANGES:
            file_path = self.get(context, "renderedFilePath") or f"drafts/{name}.java"
            return Plan(
                action=step,
                parameters={
                    "storyKey": story_key,
                    "branchName": branch_name,
                    "commitMessage": f"Fix broken locator in test: {name}",
                    "filePaths": [file_path],
                },
                reasoning="Committing rendered file with locator fix",
            )
        if step == ActionType.REQUEST_APPROVAL:
            return Plan(
                action=step,
                parameters={
                    "testCode": self._fixed_content(context, working_locator),
                    "jiraKey": story_key,
                    "testName": name,
                    "requestedBy": self.requested_by,
                    "requestType": "SELF_HEALING_FIX",
                },
                reasoning="Locator fix verified - creating approval request",
            )
        return Plan(
            action=ActionType.CREATE_PULL_REQUEST,
            parameters={
                "storyKey": story_key,
                "branchName": branch_name,
                "title": f"Fix broken locator: {name}",
                "description": f"Automated locator fix by {self.requested_by}",
            },
            reasoning="Creating pull request for review",
        )

    # ------------------------------------------------------------------
    # Result handlers
    # ------------------------------------------------------------------

    def result_handlers(self) -> dict[ActionType, ResultHandler]:
        handlers = super().result_handlers()
        handlers.update(
            {
                ActionType.EXTRACT_BROKEN_LOCATOR: self._on_extract,
                ActionType.QUERY_ELEMENT_REGISTRY: self._on_query_registry,
                ActionType.READ_FILE: self._on_capture_html,
                ActionType.DISCOVER_LOCATOR: self._on_discover,
                ActionType.MODIFY_FILE: self._on_apply,
                ActionType.EXECUTE_TEST: self._on_verify,
                ActionType.WRITE_FILE: self._on_write_file,
            }
        )
        return handlers

    async def _on_extract(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        analysis = dict(result.output)
        if not result.success:
            # Keep going with what we have; candidates will fail verification.
            self.logger.warning("broken_locator_extraction_failed", error=result.error_message)
            analysis["extractionFailed"] = True
        analysis.setdefault("brokenLocator", "UNKNOWN")
        self.put(context, "failureAnalysis", analysis)

    async def _on_query_registry(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        alternatives = result.output.get("alternatives") if result.success else None
        self.put(context, "alternatives", list(alternatives or []))
        self.put(context, "altIndex", 0)

    async def _on_capture_html(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        if result.success:
            html = result.output.get("relevantHtml", result.output.get("html"))
            context.put_work_product("pageHtml", html)

    async def _on_discover(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        suggestions = result.output.get("suggestions") if result.success else None
        if not result.success:
            self.logger.warning("locator_discovery_failed", error=result.error_message)
        self.put(context, "aiSuggestions", list(suggestions or []))
        self.put(context, "aiIndex", 0)

    async def _on_apply(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        if not result.success:
            self._advance_cursor(context)

    async def _on_verify(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        stable = result.success and bool(result.output.get("isStable", False))
        if stable:
            self.put(context, "fixVerified", True)
            self.logger.info("locator_fix_verified", test_id=plan.parameters.get("testId"))
        else:
            self._advance_cursor(context)

    async def _on_write_file(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        if result.success:
            self.put(context, "renderedFilePath", result.output.get("filePath"))

    def _advance_cursor(self, context: AgentContext) -> None:
        alternatives = self.get(context, "alternatives") or []
        alt_index = self.get(context, "altIndex", 0)
        if alt_index < len(alternatives):
            self.logger.warning("registry_alternative_failed", index=alt_index)
            self.put(context, "altIndex", alt_index + 1)
            return

        suggestions = self.get(context, "aiSuggestions") or []
        ai_index = self.get(context, "aiIndex", 0)
        if ai_index < len(suggestions):
            self.logger.warning("ai_suggestion_failed", index=ai_index)
            self.put(context, "aiIndex", ai_index + 1)
