"""Enumerations shared by schemas, services and ORM models."""
from enum import Enum


class Protocol(str, Enum):
    """Timing discipline of a block."""
    TIME_CAPPED = "T"
    REP_BASED = "R"
    EMOM = "E"
    LIBRE = "LIBRE"


class SessionType(str, Enum):
    PDP_T = "PDP-T"
    PDP_R = "PDP-R"
    PDP_E = "PDP-E"
    MIX = "MIX"


class BlockType(str, Enum):
    BOOST = "BOOST"
    BASE = "BASE"
    BUILD = "BUILD"
    BURN = "BURN"


class StepType(str, Enum):
    PLANNING = "PLANNING"
    WARMUP = "WARMUP"
    WORK = "WORK"
    SUMMARY = "SUMMARY"


class ExerciseQuality(str, Enum):
    STRENGTH = "F"
    ENERGY = "E"
    MOBILITY = "M"
    CONTROL = "C"


class RoundOutcome(str, Enum):
    SUCCESS = "success"
    FAIL = "fail"


class InsightType(str, Enum):
    UP = "up"
    DOWN = "down"
    KEEP = "keep"
    SKIPPED = "skipped"


class InsightKind(str, Enum):
    """Which rule produced an insight; only ADJUSTMENT counts toward efficiency."""
    ADJUSTMENT = "adjustment"
    HEART_RATE = "heart_rate"
    CARDIO = "cardio"
    SKIPPED = "skipped"


class CueType(str, Enum):
    HALFWAY = "halfway"
    MINUTE_WARNING = "minute_warning"
    COUNTDOWN = "countdown"
    TERMINAL = "terminal"
    ROUND_START = "round_start"
    SUCCESS = "success"
    REST_OVER = "rest_over"


class LogType(str, Enum):
    BLOCK = "BLOCK"
    SESSION_FEEDBACK = "SESSION_FEEDBACK"


class LogStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class TaskStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class NotificationPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
