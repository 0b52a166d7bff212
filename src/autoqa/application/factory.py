"""
Application Layer - Factory

Dependency injection factory wiring the orchestrator, agents and
infrastructure adapters from YAML configuration profiles.

Key Responsibilities:
- Load configuration profiles (dev/prod) from ``configs/{profile}.yaml``
- Instantiate persistence adapters (memory store, execution store)
- Build the tool registry from ``module``/``type`` tool specs
- Pick the approval gate and seed the test catalog
- Register all built-in agents with the orchestrator
"""

import importlib
import os
from pathlib import Path
from typing import Any

import structlog
import yaml

from autoqa.application.orchestrator import DEFAULT_AGENT_CONFIG, Orchestrator
from autoqa.core.agents.flaky_test import FlakyTestAgent
from autoqa.core.agents.self_healing import SelfHealingAgent
from autoqa.core.agents.test_generator import TestGeneratorAgent
from autoqa.core.domain.events import ActionType
from autoqa.core.domain.models import AgentConfig, AgentType
from autoqa.core.interfaces.approval import ApprovalGateProtocol
from autoqa.core.interfaces.catalog import TestCatalogProtocol
from autoqa.core.interfaces.executions import ExecutionStoreProtocol
from autoqa.core.interfaces.memory import DEFAULT_TTL_SECONDS, MemoryStoreProtocol
from autoqa.core.interfaces.tools import ToolProtocol
from autoqa.infrastructure.tools.registry import StaticTool, ToolRegistry

CONFIG_DIR_ENV = "AUTOQA_CONFIG_DIR"
DEFAULT_WORK_DIR = ".autoqa"


class AutoQAFactory:
    """
    Factory for creating a fully wired orchestrator.

    Args:
        config_dir: Directory holding profile YAML files. Falls back to
            ``$AUTOQA_CONFIG_DIR``, then ``configs``.
    """

    def __init__(self, config_dir: str | None = None):
        self.config_dir = Path(config_dir or os.getenv(CONFIG_DIR_ENV, "configs"))
        self.logger = structlog.get_logger().bind(component="autoqa_factory")

    def create_orchestrator(self, profile: str = "dev", work_dir: str | None = None) -> Orchestrator:
        """
        Build an orchestrator with every built-in agent registered.

        Args:
            profile: Configuration profile name
            work_dir: Optional override of ``persistence.work_dir``

        Returns:
            Orchestrator ready to start executions

        Raises:
            FileNotFoundError: If the profile YAML is missing
            ValueError: If the configuration is invalid
        """
        config = self._load_profile(profile)
        if work_dir:
            config.setdefault("persistence", {})["work_dir"] = work_dir

        self.logger.info(
            "creating_orchestrator",
            profile=profile,
            work_dir=config.get("persistence", {}).get("work_dir", DEFAULT_WORK_DIR),
        )

        memory_store = self._create_memory_store(config)
        execution_store = self._create_execution_store(config)
        tool_registry = self._create_tool_registry(config)
        approval_gate = self._create_approval_gate(config)
        test_catalog = self._create_test_catalog(config)

        orchestrator = Orchestrator(
            execution_store=execution_store,
            memory_store=memory_store,
            default_config=self._create_default_config(config),
        )
        orchestrator.register_agent(
            AgentType.PLAYWRIGHT_TEST_GENERATOR,
            TestGeneratorAgent(memory_store, execution_store, tool_registry, approval_gate),
        )
        orchestrator.register_agent(
            AgentType.SELF_HEALING_TEST_FIXER,
            SelfHealingAgent(
                memory_store, execution_store, tool_registry, test_catalog, approval_gate
            ),
        )
        orchestrator.register_agent(
            AgentType.FLAKY_TEST_FIXER,
            FlakyTestAgent(
                memory_store, execution_store, tool_registry, test_catalog, approval_gate
            ),
        )
        return orchestrator

    def agent_config(self, profile: str, agent_type: AgentType) -> AgentConfig:
        """Per-agent config: orchestrator defaults overlaid with ``agents.<TYPE>``."""
        config = self._load_profile(profile)
        merged = self._config_defaults(config)
        merged.update(config.get("agents", {}).get(agent_type.value) or {})
        return AgentConfig.from_dict(merged)

    def create_execution_store(self, profile: str = "dev") -> ExecutionStoreProtocol:
        """Execution store for a profile, for commands that only read records."""
        return self._create_execution_store(self._load_profile(profile))

    def create_memory_store(self, profile: str = "dev") -> MemoryStoreProtocol:
        return self._create_memory_store(self._load_profile(profile))

    def create_tool_registry(self, profile: str = "dev") -> ToolRegistry:
        return self._create_tool_registry(self._load_profile(profile))

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def _load_profile(self, profile: str) -> dict:
        """
        Load configuration profile from YAML file.

        Raises:
            FileNotFoundError: If profile YAML not found
        """
        profile_path = self.config_dir / f"{profile}.yaml"

        if not profile_path.exists():
            self.logger.error(
                "profile_not_found",
                profile=profile,
                path=str(profile_path),
                hint="Ensure profile YAML exists in configs directory",
            )
            raise FileNotFoundError(f"Profile not found: {profile_path}")

        with open(profile_path) as f:
            config = yaml.safe_load(f) or {}

        self.logger.debug("profile_loaded", profile=profile, config_keys=list(config.keys()))
        return config

    def _config_defaults(self, config: dict) -> dict[str, Any]:
        merged: dict[str, Any] = {
            "max_iterations": DEFAULT_AGENT_CONFIG.max_iterations,
            "max_cost": DEFAULT_AGENT_CONFIG.max_cost,
            "approval_timeout_seconds": DEFAULT_AGENT_CONFIG.approval_timeout_seconds,
        }
        merged.update(config.get("orchestrator", {}).get("defaults") or {})
        return merged

    def _create_default_config(self, config: dict) -> AgentConfig:
        return AgentConfig.from_dict(self._config_defaults(config))

    # ------------------------------------------------------------------
    # Adapters
    # ------------------------------------------------------------------

    def _create_memory_store(self, config: dict) -> MemoryStoreProtocol:
        memory_config = config.get("memory", {})
        memory_type = memory_config.get("type", "memory")
        ttl = float(memory_config.get("ttl_seconds", DEFAULT_TTL_SECONDS))

        if memory_type == "memory":
            from autoqa.infrastructure.persistence.memory_store import InMemoryMemoryStore

            return InMemoryMemoryStore(default_ttl=ttl)

        if memory_type == "file":
            from autoqa.infrastructure.persistence.memory_store import FileMemoryStore

            work_dir = config.get("persistence", {}).get("work_dir", DEFAULT_WORK_DIR)
            return FileMemoryStore(work_dir=work_dir, default_ttl=ttl)

        raise ValueError(f"Unknown memory type: {memory_type}")

    def _create_execution_store(self, config: dict) -> ExecutionStoreProtocol:
        persistence_config = config.get("persistence", {})
        persistence_type = persistence_config.get("type", "memory")

        if persistence_type == "memory":
            from autoqa.infrastructure.persistence.execution_store import InMemoryExecutionStore

            return InMemoryExecutionStore()

        if persistence_type == "sqlite":
            from autoqa.infrastructure.persistence.execution_store import SqliteExecutionStore

            work_dir = persistence_config.get("work_dir", DEFAULT_WORK_DIR)
            db_path = persistence_config.get("db_path") or str(Path(work_dir) / "executions.db")
            return SqliteExecutionStore(db_path=db_path)

        raise ValueError(f"Unknown persistence type: {persistence_type}")

    def _create_tool_registry(self, config: dict) -> ToolRegistry:
        registry_config = config.get("tool_registry", {})
        registry = ToolRegistry(
            failure_threshold=int(registry_config.get("failure_threshold", 5)),
            recovery_timeout=float(registry_config.get("recovery_timeout_seconds", 60)),
            base_delay=float(registry_config.get("base_delay_seconds", 1.0)),
        )
        for tool_spec in config.get("tools", []) or []:
            tool = self._instantiate_tool(tool_spec)
            if tool is not None:
                registry.register_tool(tool)

        self.logger.debug("tool_registry_created", tools=len(registry.tool_catalog()))
        return registry

    def _instantiate_tool(self, tool_spec: dict) -> ToolProtocol | None:
        """
        Instantiate a tool from configuration specification.

        Two forms are accepted:
        - ``{action: ACTION_TYPE, static: {output, cost, success, ...}}``
          registers a StaticTool with canned output
        - ``{type: ClassName, module: dotted.module, params: {...}}``
          imports and instantiates a tool class

        Returns:
            Tool instance or None if the spec is invalid
        """
        if "static" in tool_spec:
            try:
                action_type = ActionType(tool_spec["action"])
            except (KeyError, ValueError):
                self.logger.warning("invalid_tool_spec", spec=tool_spec, hint="Static tools need a valid 'action'")
                return None
            static = tool_spec.get("static") or {}
            return StaticTool(
                action_type=action_type,
                output=static.get("output"),
                success=bool(static.get("success", True)),
                cost=float(static.get("cost", 0.0)),
                error=static.get("error"),
                required_parameters=static.get("required_parameters"),
                description=static.get("description", ""),
            )

        tool_type = tool_spec.get("type")
        tool_module = tool_spec.get("module")
        tool_params = dict(tool_spec.get("params") or {})

        if not tool_type or not tool_module:
            self.logger.warning(
                "invalid_tool_spec",
                tool_type=tool_type,
                tool_module=tool_module,
                hint="Tool spec must include 'type' and 'module'",
            )
            return None

        try:
            module = importlib.import_module(tool_module)
            tool_class = getattr(module, tool_type)
            tool_instance = tool_class(**tool_params)
        except Exception as e:
            self.logger.error(
                "tool_instantiation_failed",
                tool_type=tool_type,
                tool_module=tool_module,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        self.logger.debug("tool_instantiated", tool_type=tool_type, tool_name=tool_instance.name)
        return tool_instance

    def _create_approval_gate(self, config: dict) -> ApprovalGateProtocol | None:
        approval_config = config.get("approval", {})
        mode = approval_config.get("mode", "auto")

        if mode == "auto":
            from autoqa.infrastructure.approval import AutoApproveGate

            return AutoApproveGate()

        if mode == "pending":
            from autoqa.infrastructure.approval import PendingApprovalGate

            return PendingApprovalGate()

        if mode == "none":
            return None

        raise ValueError(f"Unknown approval mode: {mode}")

    def _create_test_catalog(self, config: dict) -> TestCatalogProtocol:
        from autoqa.infrastructure.catalog import InMemoryTestCatalog

        tests_config: Any = config.get("tests", {})
        if isinstance(tests_config, list):
            return InMemoryTestCatalog.from_records(tests_config)

        catalog_file = tests_config.get("catalog_file")
        if catalog_file:
            path = Path(catalog_file)
            if not path.is_absolute():
                path = self.config_dir / path
            return InMemoryTestCatalog.from_yaml(path)

        return InMemoryTestCatalog.from_records(tests_config.get("items") or [])
