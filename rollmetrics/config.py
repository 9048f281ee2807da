"""
Configuration constants for the session metrics engine.

Scoring constants are product-tuned; changing any of them changes observable
scores and requires bumping SESSION_SCHEMA_VERSION.
"""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(PROJECT_ROOT / ".env")

# ---------------------------------------------------------------------------
# Schema versions
# ---------------------------------------------------------------------------
SESSION_SCHEMA_VERSION = 1
METRICS_SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Segmentation and quality thresholds
# ---------------------------------------------------------------------------
# Fixed window (ms) for per-segment behavior (fatigue curve, recovery gaps).
SEGMENT_MS = 30_000
# Final segments this short (ms) are dropped at finalize as noise.
MIN_SEGMENT_MS = 1000
# Sessions shorter than this (s) are flagged short.
MIN_VALID_SESSION_SEC = 10
# Detection rate below this is flagged low quality.
MIN_DETECTION_RATE = 0.4
# Sessions shorter than this (ms) are stored with quality "low" even if detection is fine.
LOW_QUALITY_SESSION_MS = 30_000

# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------
# bbox area delta (0..1) -> 0..100 intensity.
INTENSITY_SCALE = 4000.0
# EMA alpha for intensity; ~2 s horizon at ~30 fps.
INTENSITY_ALPHA = 0.1
# Symmetry variance (deg^2) at which the symmetry term of form score bottoms out.
SYMMETRY_VAR_CAP = 400.0
# Form consistency weights: symmetry, detection, posture.
FORM_WEIGHTS = (0.4, 0.3, 0.3)
# Overall scorecard weights: consistency, intensity, posture.
SCORECARD_WEIGHTS = (0.5, 0.3, 0.2)
# Placeholder position until a real position classifier exists.
ACTIVE_CONTROL = "Active Control"
ACTIVE_CONTROL_CONFIDENCE = 0.5
GUARD_POSITIONS = ("guard_closed", "guard_open", "half_guard")
# Historical trend uses at most this many previous sessions.
HISTORY_TREND_LEN = 10

# ---------------------------------------------------------------------------
# Deployment knobs (environment / .env)
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("ROLLMETRICS_LOG_LEVEL", "INFO").upper()
HISTORY_LIMIT = int(os.getenv("ROLLMETRICS_HISTORY_LIMIT", "100"))
OUTPUT_DIR = os.getenv("ROLLMETRICS_OUTPUT_DIR", "outputs")
