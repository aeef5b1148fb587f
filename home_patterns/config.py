"""Configuration for the behavioural pattern engine."""

from pathlib import Path

# Base data directory, all runtime data stored here
DATA_DIR = Path("data")
DB_PATH = DATA_DIR / "patterns.db"

# category -> key -> default. Runtime overrides are stored in the
# configurations table under the same category/key names.
PATTERN_CONFIG = {
    "Learning": {
        "SessionWindowMinutes": 30,
        "ConfidenceAlpha": 0.1,
        "DefaultTransitionConfidence": 0.5,
        "DelayBeta": 0.2,
    },
    "ContextBucket": {
        "Format": "{dayType}*{timeBucket}*{location}",
    },
    "Policy": {
        "DefaultReminderConfidence": 0.5,
        "ConfidenceStepValue": 0.1,
        "MinimumOccurrences": 1,
        "MinimumConfidence": 0.4,
        "TimeWindowAlpha": 0.1,
        "MinDailyEvidence": 3,
        "MinWeeklyEvidence": 3,
        "CooldownHours": 24.0,
        "ExecuteAutoThreshold": 0.95,
    },
    "MatchingPolicy": {
        "MatchByActionType": True,
        "MatchByDayType": False,
        "MatchByPeoplePresent": False,
        "MatchByStateSignals": False,
        "MatchByTimeBucket": False,
        "MatchByLocation": False,
        "TimeOffsetMinutes": 30,
        "SignalSelectionEnabled": True,
        "SignalSelectionLimit": 10,
        "SignalSimilarityThreshold": 0.70,
        "SignalProfileUpdateAlpha": 0.10,
    },
    "Routine": {
        "RoutineObservationWindowMinutes": 45,
        "DefaultRoutineProbability": 0.5,
        "ProbabilityIncreaseStep": 0.1,
        "OutlierMinToleranceSeconds": 300.0,
        "OutlierMadMultiplier": 3.0,
        "OutlierRelativeTolerance": 1.0,
    },
    "TimeBuckets": {
        "LocalTimeOffsetMinutes": 0,
        "MorningStartHour": 5,
        "AfternoonStartHour": 12,
        "EveningStartHour": 17,
        "NightStartHour": 22,
    },
    "LLM": {
        "Enabled": False,
        "Model": "claude-sonnet-4-6",
        "Temperature": 0.2,
    },
}

# Sensor-type tables used by the signal selector. Keyed by the second
# dot-separated segment of a sensor id ("sensor.presence.kitchen" -> "presence").
SIGNAL_IMPORTANCE = {
    "presence": 1.0,
    "occupancy": 1.0,
    "motion": 0.8,
    "door": 0.7,
    "audio": 0.6,
    "music": 0.6,
    "window": 0.5,
    "light": 0.3,
    "brightness": 0.3,
    "temp": 0.2,
    "temperature": 0.2,
    "humidity": 0.1,
}
DEFAULT_SIGNAL_IMPORTANCE = 0.5

SIGNAL_RANGES = {
    "temp": (0.0, 100.0),
    "temperature": (0.0, 100.0),
    "humidity": (0.0, 100.0),
    "light": (0.0, 1000.0),
    "brightness": (0.0, 1000.0),
}
DEFAULT_SIGNAL_RANGE = (0.0, 100.0)

SIGNAL_TEXT_MAPPINGS = {
    "presence": {"home": 1.0, "present": 1.0, "on": 1.0, "true": 1.0,
                 "away": 0.0, "absent": 0.0, "off": 0.0, "false": 0.0},
    "door": {"open": 1.0, "opened": 1.0, "closed": 0.0, "shut": 0.0},
    "audio": {"playing": 1.0, "on": 1.0, "stopped": 0.0, "off": 0.0, "paused": 0.0},
}
SIGNAL_TEXT_MAPPINGS["occupancy"] = SIGNAL_TEXT_MAPPINGS["presence"]
SIGNAL_TEXT_MAPPINGS["window"] = SIGNAL_TEXT_MAPPINGS["door"]
SIGNAL_TEXT_MAPPINGS["music"] = SIGNAL_TEXT_MAPPINGS["audio"]
UNKNOWN_TEXT_VALUE = 0.5
