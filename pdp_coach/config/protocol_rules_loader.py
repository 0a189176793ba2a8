"""
Protocol Rules Configuration Loader

Loads the thresholds shared by the timer state machine and the session
analysis engine from protocol_rules.yaml into frozen, validated dataclasses.

Supports hot-reloading so coaches can retune bands without a restart. When
no file is configured, the bundled protocol_rules.yaml is used.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, Callable

import yaml

from pdp_coach.core.logging import get_logger

logger = get_logger(__name__)

BLOCK_TYPES = ("BASE", "BUILD", "BURN", "BOOST")


class ProtocolRulesLoadError(Exception):
    """Raised when protocol rules cannot be loaded or are invalid."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.details = details or {}


class ProtocolRulesValidationError(ProtocolRulesLoadError):
    """Raised when protocol rules fail validation."""


@dataclass(frozen=True)
class RepBand:
    """Floor/ceiling rep band for a time-capped block."""

    floor: int
    ceiling: int

    def __post_init__(self):
        if not 0 <= self.floor < self.ceiling:
            raise ProtocolRulesValidationError(
                f"rep band floor ({self.floor}) must be >= 0 and below ceiling ({self.ceiling})"
            )


@dataclass(frozen=True)
class TimeThreshold:
    """Cap and efficiency thresholds for a rep-based (for-time) block."""

    cap_seconds: int
    efficiency_seconds: int

    def __post_init__(self):
        if not 0 < self.efficiency_seconds <= self.cap_seconds:
            raise ProtocolRulesValidationError(
                f"efficiency_seconds ({self.efficiency_seconds}) must be positive and <= cap_seconds ({self.cap_seconds})"
            )


@dataclass(frozen=True)
class TimeCappedRules:
    default_cap_seconds: int = 240
    halfway_cue: bool = True
    minute_warning_seconds: int = 60
    countdown_from: int = 3
    rep_bands: dict[str, RepBand] = field(default_factory=dict)
    stagnation_tolerance_reps: int = 1

    def __post_init__(self):
        if self.default_cap_seconds <= 0:
            raise ProtocolRulesValidationError(
                f"default_cap_seconds ({self.default_cap_seconds}) must be positive"
            )
        if self.countdown_from < 0:
            raise ProtocolRulesValidationError(
                f"countdown_from ({self.countdown_from}) must be >= 0"
            )


@dataclass(frozen=True)
class RepBasedRules:
    thresholds: dict[str, TimeThreshold] = field(default_factory=dict)


@dataclass(frozen=True)
class EmomRules:
    default_minutes: int = 4
    round_seconds: int = 60
    countdown_from: int = 3
    default_reps_per_round: int = 6

    def __post_init__(self):
        if self.default_minutes <= 0:
            raise ProtocolRulesValidationError(
                f"default_minutes ({self.default_minutes}) must be positive"
            )
        if self.round_seconds <= self.countdown_from:
            raise ProtocolRulesValidationError(
                f"round_seconds ({self.round_seconds}) must exceed countdown_from ({self.countdown_from})"
            )


@dataclass(frozen=True)
class LibreRules:
    default_rest_seconds: int = 90
    default_round_rest_seconds: int = 60
    default_sets: int = 3
    default_reps: int = 8


@dataclass(frozen=True)
class HeartRateRules:
    emom_caution_bpm: int = 165
    energy_caution_bpm: int = 160
    cardio_caution_bpm: int = 170
    cardio_aerobic_floor_bpm: int = 140

    def __post_init__(self):
        if self.cardio_aerobic_floor_bpm > self.cardio_caution_bpm:
            raise ProtocolRulesValidationError(
                "cardio_aerobic_floor_bpm must not exceed cardio_caution_bpm"
            )


@dataclass(frozen=True)
class ProtocolRules:
    """Complete protocol rule set."""

    adjustment_step: float = 0.05
    time_capped: TimeCappedRules = field(default_factory=TimeCappedRules)
    rep_based: RepBasedRules = field(default_factory=RepBasedRules)
    emom: EmomRules = field(default_factory=EmomRules)
    libre: LibreRules = field(default_factory=LibreRules)
    heart_rate: HeartRateRules = field(default_factory=HeartRateRules)

    def __post_init__(self):
        if not 0 < self.adjustment_step < 1:
            raise ProtocolRulesValidationError(
                f"adjustment_step ({self.adjustment_step}) must be between 0 and 1"
            )

    def rep_band(self, block_type: str) -> RepBand | None:
        """BOOST shares BASE's band when it has none of its own."""
        bands = self.time_capped.rep_bands
        return bands.get(block_type) or (bands.get("BASE") if block_type == "BOOST" else None)

    def time_threshold(self, block_type: str) -> TimeThreshold | None:
        thresholds = self.rep_based.thresholds
        return thresholds.get(block_type) or (
            thresholds.get("BASE") if block_type == "BOOST" else None
        )


def default_protocol_rules() -> ProtocolRules:
    """Built-in rule set, identical to the bundled YAML."""
    return ProtocolRules(
        time_capped=TimeCappedRules(
            rep_bands={
                "BASE": RepBand(20, 40),
                "BUILD": RepBand(30, 50),
                "BURN": RepBand(50, 70),
                "BOOST": RepBand(20, 40),
            }
        ),
        rep_based=RepBasedRules(
            thresholds={
                "BASE": TimeThreshold(300, 180),
                "BUILD": TimeThreshold(360, 216),
                "BURN": TimeThreshold(420, 252),
                "BOOST": TimeThreshold(300, 180),
            }
        ),
    )


class ProtocolRulesLoader:
    """Loader for protocol rules with hot-reload support."""

    def __init__(self, config_path: Path | None = None):
        self._lock = RLock()
        self._rules: ProtocolRules | None = None
        self._config_path = Path(config_path) if config_path else self._default_config_path()
        self._reload_callbacks: list[Callable[[ProtocolRules], None]] = []
        self._reload_count = 0

        self._load_config()

    @staticmethod
    def _default_config_path() -> Path:
        """Get default configuration file path."""
        return Path(__file__).parent / "protocol_rules.yaml"

    def _load_config(self) -> None:
        """Load rules from YAML file."""
        try:
            with open(self._config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning(
                "Protocol rules file not found, using built-in defaults",
                path=str(self._config_path),
            )
            self._rules = default_protocol_rules()
            self._reload_count += 1
            self._notify_callbacks()
            return
        except yaml.YAMLError as e:
            raise ProtocolRulesLoadError(
                f"Failed to parse YAML protocol rules: {e}",
                details={"file_path": str(self._config_path)},
            )

        try:
            self._rules = self._parse_rules(data)
        except ProtocolRulesValidationError:
            raise
        except Exception as e:
            raise ProtocolRulesLoadError(
                f"Failed to parse protocol rules: {e}",
                details={"file_path": str(self._config_path)},
            )

        self._reload_count += 1
        logger.info(
            "Protocol rules loaded",
            path=str(self._config_path),
            reload_count=self._reload_count,
        )
        self._notify_callbacks()

    def _parse_rules(self, data: dict[str, Any]) -> ProtocolRules:
        """Parse raw YAML data into ProtocolRules.

        Raises:
            ProtocolRulesValidationError: If validation fails.
        """
        t_data = dict(data.get("time_capped", {}))
        bands_data = t_data.pop("rep_bands", {})
        rep_bands = {
            str(name).upper(): RepBand(**band) for name, band in bands_data.items()
        }
        time_capped = TimeCappedRules(rep_bands=rep_bands, **t_data)

        r_data = data.get("rep_based", {})
        thresholds = {
            str(name).upper(): TimeThreshold(**threshold)
            for name, threshold in r_data.get("thresholds", {}).items()
        }

        unknown = (set(rep_bands) | set(thresholds)) - set(BLOCK_TYPES)
        if unknown:
            raise ProtocolRulesValidationError(
                f"Unknown block types in protocol rules: {sorted(unknown)}"
            )

        return ProtocolRules(
            adjustment_step=data.get("adjustment_step", 0.05),
            time_capped=time_capped,
            rep_based=RepBasedRules(thresholds=thresholds),
            emom=EmomRules(**data.get("emom", {})),
            libre=LibreRules(**data.get("libre", {})),
            heart_rate=HeartRateRules(**data.get("heart_rate", {})),
        )

    @property
    def rules(self) -> ProtocolRules:
        """Get current rules (thread-safe)."""
        with self._lock:
            if self._rules is None:
                self._load_config()
            return self._rules

    def reload(self) -> None:
        """Force reload rules from file."""
        with self._lock:
            self._load_config()

    def register_reload_callback(self, callback: Callable[[ProtocolRules], None]) -> None:
        self._reload_callbacks.append(callback)

    def _notify_callbacks(self) -> None:
        if self._rules is None:
            return
        for callback in self._reload_callbacks:
            try:
                callback(self._rules)
            except Exception as e:
                logger.warning("Protocol rules reload callback failed", error=str(e))

    @property
    def reload_count(self) -> int:
        return self._reload_count


_loader_instance: ProtocolRulesLoader | None = None


def get_protocol_rules_loader(config_path: Path | None = None) -> ProtocolRulesLoader:
    """Get or create the singleton ProtocolRulesLoader instance."""
    global _loader_instance
    if _loader_instance is None:
        if config_path is None:
            from pdp_coach.config.settings import get_settings

            configured = get_settings().protocol_rules_path
            config_path = Path(configured) if configured else None
        _loader_instance = ProtocolRulesLoader(config_path)
    return _loader_instance


def get_protocol_rules() -> ProtocolRules:
    """Get current protocol rules.

    Example:
        >>> from pdp_coach.config.protocol_rules_loader import get_protocol_rules
        >>> band = get_protocol_rules().rep_band("BUILD")
    """
    return get_protocol_rules_loader().rules


def reload_protocol_rules() -> None:
    """Force reload protocol rules from file."""
    get_protocol_rules_loader().reload()
