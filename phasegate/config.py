"""
Configuration System

Manages engine configuration from multiple sources:
1. Default values (including the default phase table)
2. Configuration file (phasegate.yaml)
3. Environment variables (highest priority)
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationError
from .roles import Concern, Role, default_priority, parse_roles

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Gate criterion kinds with a built-in provider
CRITERION_KINDS = {
    "items_done",
    "reviews_settled",
    "catalogue_settled",
    "escalations_cleared",
    "manual",
}

# Debate is capped at two rounds regardless of configuration
MAX_DEBATE_ROUNDS = 2


@dataclass
class EngineConfig:
    """Worker pool configuration"""
    max_workers: int = 4


@dataclass
class ReviewConfig:
    """Review protocol configuration"""
    vote_timeout_seconds: float = 30.0
    max_vote_retries: int = 3
    max_debate_rounds: int = MAX_DEBATE_ROUNDS
    max_revisions: int = 3


@dataclass
class RetryConfig:
    """Backoff between vote re-requests"""
    initial_delay_ms: int = 100
    max_delay_ms: int = 5000
    exponential_base: float = 2.0
    jitter: bool = True


@dataclass
class ChronicleConfig:
    """Chronicle persistence configuration"""
    db_path: str = ":memory:"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True


@dataclass
class CriterionConfig:
    """A gate criterion declared for a phase"""
    id: str
    description: str = ""
    kind: str = "manual"


@dataclass
class PhaseConfig:
    """A phase: its reviewers, its gate and its safety priority"""
    ordinal: int
    name: str
    reviewers: List[str] = field(default_factory=list)
    criteria: List[CriterionConfig] = field(default_factory=list)
    priority: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhaseConfig":
        criteria = [
            c if isinstance(c, CriterionConfig) else CriterionConfig(**c)
            for c in data.get("criteria", [])
        ]
        return cls(
            ordinal=int(data["ordinal"]),
            name=data.get("name", f"Phase {data['ordinal']}"),
            reviewers=list(data.get("reviewers", [])),
            criteria=criteria,
            priority=data.get("priority"),
        )


def _standard_gate(*extra: CriterionConfig) -> List[CriterionConfig]:
    return [
        CriterionConfig("items_done", "Every work item in the phase is done", "items_done"),
        CriterionConfig("reviews_settled", "No proposal is still under review", "reviews_settled"),
        CriterionConfig("escalations_cleared", "No escalation is pending", "escalations_cleared"),
        *extra,
    ]


def default_phases() -> List[PhaseConfig]:
    """The default four-phase table."""
    return [
        PhaseConfig(
            ordinal=1,
            name="Inventory",
            reviewers=[Role.ANALYST.value, Role.TEST_ENGINEER.value],
            criteria=_standard_gate(),
            priority=Concern.TESTABILITY.value,
        ),
        PhaseConfig(
            ordinal=2,
            name="Rule Extraction",
            reviewers=[Role.ANALYST.value, Role.ARCHITECT.value, Role.CATALOGUE_CURATOR.value],
            criteria=_standard_gate(
                CriterionConfig("catalogue_settled", "No catalogue entry left in draft", "catalogue_settled"),
            ),
            priority=Concern.FIDELITY.value,
        ),
        PhaseConfig(
            ordinal=3,
            name="Implementation",
            reviewers=[Role.IMPLEMENTER.value, Role.TEST_ENGINEER.value, Role.ARCHITECT.value],
            criteria=_standard_gate(),
            priority=Concern.FIDELITY.value,
        ),
        PhaseConfig(
            ordinal=4,
            name="Quality Review",
            reviewers=[Role.QUALITY_REVIEWER.value, Role.ARCHITECT.value, Role.TEST_ENGINEER.value],
            criteria=_standard_gate(
                CriterionConfig("signoff", "Release sign-off recorded", "manual"),
            ),
            priority=Concern.QUALITY.value,
        ),
    ]


@dataclass
class WorkflowConfig:
    """Complete engine configuration"""
    engine: EngineConfig = field(default_factory=EngineConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    chronicle: ChronicleConfig = field(default_factory=ChronicleConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    phases: List[PhaseConfig] = field(default_factory=default_phases)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowConfig":
        """Create configuration from dictionary"""
        config = cls()

        if "engine" in data:
            config.engine = EngineConfig(**data["engine"])
        if "review" in data:
            config.review = ReviewConfig(**data["review"])
        if "retry" in data:
            config.retry = RetryConfig(**data["retry"])
        if "chronicle" in data:
            config.chronicle = ChronicleConfig(**data["chronicle"])
        if "logging" in data:
            config.logging = LoggingConfig(**data["logging"])
        if "phases" in data:
            config.phases = [PhaseConfig.from_dict(p) for p in data["phases"]]

        return config

    def phase(self, ordinal: int) -> PhaseConfig:
        for phase in self.phases:
            if phase.ordinal == ordinal:
                return phase
        raise ConfigurationError(f"Unknown phase: {ordinal}")

    def reviewer_table(self) -> Dict[int, frozenset]:
        """Phase ordinal -> required reviewer roles."""
        return {p.ordinal: parse_roles(p.reviewers) for p in self.phases}

    def priority_for(self, ordinal: int) -> Concern:
        phase = self.phase(ordinal)
        if phase.priority:
            return Concern(phase.priority)
        return default_priority(ordinal, len(self.phases))


class ConfigManager:
    """
    Configuration manager with multiple source support

    Load priority (highest to lowest):
    1. Environment variables
    2. Configuration file
    3. Defaults
    """

    def __init__(self, config_file: Optional[Path] = None):
        """
        Initialize configuration manager

        Args:
            config_file: Optional path to configuration file
        """
        self.config_file = Path(config_file) if config_file else Path("phasegate.yaml")
        self._config = self._load_config()

    def _load_config(self) -> WorkflowConfig:
        config = WorkflowConfig()

        if self.config_file.exists():
            try:
                with open(self.config_file, "r") as f:
                    file_data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Failed to parse {self.config_file}: {e}") from e
            if file_data:
                try:
                    config = WorkflowConfig.from_dict(file_data)
                except (TypeError, KeyError, ValueError) as e:
                    raise ConfigurationError(f"Invalid config in {self.config_file}: {e}") from e
        else:
            logger.debug(f"No config file at {self.config_file}, using defaults")

        return self._apply_env_overrides(config)

    def _apply_env_overrides(self, config: WorkflowConfig) -> WorkflowConfig:
        """
        Apply environment variable overrides

        Environment variables format: PHASEGATE_<SECTION>_<KEY>
        Example: PHASEGATE_ENGINE_MAX_WORKERS=8
        """
        if workers := os.getenv("PHASEGATE_ENGINE_MAX_WORKERS"):
            config.engine.max_workers = int(workers)

        if timeout := os.getenv("PHASEGATE_REVIEW_VOTE_TIMEOUT_SECONDS"):
            config.review.vote_timeout_seconds = float(timeout)
        if retries := os.getenv("PHASEGATE_REVIEW_MAX_VOTE_RETRIES"):
            config.review.max_vote_retries = int(retries)
        if revisions := os.getenv("PHASEGATE_REVIEW_MAX_REVISIONS"):
            config.review.max_revisions = int(revisions)

        if db_path := os.getenv("PHASEGATE_CHRONICLE_DB_PATH"):
            config.chronicle.db_path = db_path

        if log_level := os.getenv("PHASEGATE_LOG_LEVEL"):
            config.logging.level = log_level
        if log_file := os.getenv("PHASEGATE_LOG_FILE"):
            config.logging.file = log_file

        return config

    def get(self, section: Optional[str] = None) -> Any:
        """Get configuration section or entire config"""
        if section is None:
            return self._config
        return getattr(self._config, section, None)

    def save(self, file_path: Optional[Path] = None) -> None:
        """Save configuration to file"""
        save_path = file_path or self.config_file
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self._config.to_dict(), f, default_flow_style=False, sort_keys=False)

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate configuration

        Returns:
            Tuple of (is_valid, errors)
        """
        return validate_config(self._config)

    def reload(self) -> None:
        """Reload configuration from file"""
        self._config = self._load_config()


def validate_config(config: WorkflowConfig) -> tuple[bool, list[str]]:
    errors = []

    if config.engine.max_workers < 1:
        errors.append("Engine max workers must be at least 1")

    if config.review.vote_timeout_seconds <= 0:
        errors.append("Vote timeout must be positive")
    if config.review.max_vote_retries < 0:
        errors.append("Vote retries must be non-negative")
    if not 0 <= config.review.max_debate_rounds <= MAX_DEBATE_ROUNDS:
        errors.append(f"Debate rounds must be between 0 and {MAX_DEBATE_ROUNDS}")
    if config.review.max_revisions < 0:
        errors.append("Revisions must be non-negative")

    if config.retry.initial_delay_ms < 0:
        errors.append("Retry initial delay must be non-negative")
    if config.retry.max_delay_ms < config.retry.initial_delay_ms:
        errors.append("Retry max delay must be >= initial delay")

    if not config.phases:
        errors.append("At least one phase must be configured")
    ordinals = [p.ordinal for p in config.phases]
    if ordinals != list(range(1, len(ordinals) + 1)):
        errors.append("Phase ordinals must run 1..N in order")

    for phase in config.phases:
        if not phase.reviewers:
            errors.append(f"Phase {phase.ordinal} has no reviewers")
        try:
            parse_roles(phase.reviewers)
        except ValueError as e:
            errors.append(f"Phase {phase.ordinal}: {e}")
        if phase.priority is not None:
            try:
                Concern(phase.priority)
            except ValueError:
                errors.append(f"Phase {phase.ordinal}: unknown priority '{phase.priority}'")
        seen = set()
        for criterion in phase.criteria:
            if criterion.kind not in CRITERION_KINDS:
                errors.append(
                    f"Phase {phase.ordinal}: unknown criterion kind '{criterion.kind}'"
                )
            if criterion.id in seen:
                errors.append(f"Phase {phase.ordinal}: duplicate criterion '{criterion.id}'")
            seen.add(criterion.id)

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.logging.level.upper() not in valid_levels:
        errors.append(f"Logging level must be one of: {', '.join(valid_levels)}")

    return len(errors) == 0, errors


def configure_logging(config: LoggingConfig) -> None:
    """Apply a LoggingConfig to the root logger."""
    handlers: list[logging.Handler] = []
    if config.console:
        handlers.append(logging.StreamHandler())
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.file))

    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers or None,
        force=True,
    )
