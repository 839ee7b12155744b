"""
Base engine class for all settlement and workflow engines.

Provides common functionality:
- Configuration access
- Structured logging
- Decision tracking and export
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from freight_settlement.core.config import ConfigManager, get_config


class EngineDecision(BaseModel):
    """
    Structured record of a computation an engine performed.

    Kept so a number on a report can be traced back to its inputs.
    """

    timestamp: datetime
    engine_name: str
    decision_type: str
    input_data: dict[str, Any]
    reasoning: str
    output_data: dict[str, Any]
    execution_time_seconds: float


class BaseEngine(ABC):
    """
    Base class for all engines.

    Provides:
    - Configuration loading
    - Decision logging
    - A single ``execute`` entry point
    """

    def __init__(
        self,
        engine_name: str,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """
        Initialize the base engine.

        Args:
            engine_name: Name of the engine (e.g., "pay_calculator", "invoice_guard")
            config_manager: Optional config manager (defaults to global instance)
            logger: Optional structured logger
        """
        self.engine_name = engine_name
        self.config_manager = config_manager or get_config()
        self.logger = logger or structlog.get_logger(engine_name=engine_name)

        # Decision history (for auditing computed figures)
        self.decision_history: list[EngineDecision] = []

    def record_decision(
        self,
        decision_type: str,
        input_data: dict[str, Any],
        reasoning: str,
        output_data: dict[str, Any],
        started_at: float,
        finished_at: float,
    ) -> EngineDecision:
        """Build an EngineDecision and log it."""
        decision = EngineDecision(
            timestamp=datetime.now(),
            engine_name=self.engine_name,
            decision_type=decision_type,
            input_data=input_data,
            reasoning=reasoning,
            output_data=output_data,
            execution_time_seconds=finished_at - started_at,
        )
        self.log_decision(decision)
        return decision

    def log_decision(self, decision: EngineDecision) -> None:
        """
        Log an engine decision for transparency and debugging.

        Args:
            decision: EngineDecision instance with decision details
        """
        self.decision_history.append(decision)
        self.logger.info(
            "engine_decision",
            decision_type=decision.decision_type,
            reasoning=decision.reasoning,
            execution_time=decision.execution_time_seconds,
        )

    def export_decisions(self, filepath: str) -> None:
        """
        Export decision history to JSON file.

        Args:
            filepath: Path to output JSON file
        """
        with open(filepath, "w") as f:
            decisions_dict = [d.model_dump(mode="json") for d in self.decision_history]
            json.dump(decisions_dict, f, indent=2, default=str)

        self.logger.info("decisions_exported", filepath=filepath, count=len(self.decision_history))

    @abstractmethod
    def execute(self, *args: Any, **kwargs: Any) -> Any:
        """
        Execute the engine's primary function.

        Returns:
            Engine-specific output
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(engine_name='{self.engine_name}')"
