"""
Per-frame signals from normalized pose landmarks (MediaPipe 33-point layout).
Produces the FrameUpdatePayload consumed by SessionTracker.
"""
from __future__ import annotations

import math
from typing import Any, Optional

import numpy as np

from .types import FrameUpdatePayload, finite_float

# Torso angle (deg from horizontal) outside this band counts as leaning.
UPRIGHT_TORSO_MIN_DEG = 60.0
UPRIGHT_TORSO_MAX_DEG = 120.0


class LandmarkIdx:
    NOSE = 0
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28


Point = tuple[float, float]


def _get_point(landmarks: list[dict[str, Any]], idx: int) -> Optional[Point]:
    if not landmarks or idx >= len(landmarks):
        return None
    lm = landmarks[idx]
    if not lm or lm.get("x") is None or lm.get("y") is None:
        return None
    x, y = float(lm["x"]), float(lm["y"])
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return (x, y)


def _midpoint(a: Optional[Point], b: Optional[Point]) -> Optional[Point]:
    if a is None or b is None:
        return None
    return ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0)


def _angle_deg(a: Optional[Point], b: Optional[Point], c: Optional[Point]) -> Optional[float]:
    """Angle at b for triangle a-b-c, in degrees."""
    if a is None or b is None or c is None:
        return None
    ba = (a[0] - b[0], a[1] - b[1])
    bc = (c[0] - b[0], c[1] - b[1])
    denom = math.hypot(*ba) * math.hypot(*bc)
    if denom < 1e-9:
        return None
    cos_val = (ba[0] * bc[0] + ba[1] * bc[1]) / denom
    cos_val = max(-1.0, min(1.0, cos_val))
    return math.degrees(math.acos(cos_val))


def _abs_diff(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return abs(a - b)


def joint_angles(landmarks: list[dict[str, Any]]) -> dict[str, Optional[float]]:
    p = {name: _get_point(landmarks, idx) for name, idx in vars(LandmarkIdx).items() if not name.startswith("_")}
    return {
        "elbowL": _angle_deg(p["LEFT_SHOULDER"], p["LEFT_ELBOW"], p["LEFT_WRIST"]),
        "elbowR": _angle_deg(p["RIGHT_SHOULDER"], p["RIGHT_ELBOW"], p["RIGHT_WRIST"]),
        "kneeL": _angle_deg(p["LEFT_HIP"], p["LEFT_KNEE"], p["LEFT_ANKLE"]),
        "kneeR": _angle_deg(p["RIGHT_HIP"], p["RIGHT_KNEE"], p["RIGHT_ANKLE"]),
        "shoulderL": _angle_deg(p["LEFT_ELBOW"], p["LEFT_SHOULDER"], p["LEFT_HIP"]),
        "shoulderR": _angle_deg(p["RIGHT_ELBOW"], p["RIGHT_SHOULDER"], p["RIGHT_HIP"]),
        "hipL": _angle_deg(p["LEFT_SHOULDER"], p["LEFT_HIP"], p["LEFT_KNEE"]),
        "hipR": _angle_deg(p["RIGHT_SHOULDER"], p["RIGHT_HIP"], p["RIGHT_KNEE"]),
    }


def torso_angle_deg(landmarks: list[dict[str, Any]]) -> Optional[float]:
    """Hip-centre -> shoulder-centre line against the horizontal; 90 = upright."""
    shoulder_mid = _midpoint(
        _get_point(landmarks, LandmarkIdx.LEFT_SHOULDER), _get_point(landmarks, LandmarkIdx.RIGHT_SHOULDER)
    )
    hip_mid = _midpoint(_get_point(landmarks, LandmarkIdx.LEFT_HIP), _get_point(landmarks, LandmarkIdx.RIGHT_HIP))
    if shoulder_mid is None or hip_mid is None:
        return None
    dx = shoulder_mid[0] - hip_mid[0]
    dy = shoulder_mid[1] - hip_mid[1]
    return abs(math.degrees(math.atan2(dy, dx)))


def visibility_avg(landmarks: list[dict[str, Any]]) -> Optional[float]:
    vis = [float(lm.get("visibility") or 0.0) for lm in landmarks if lm]
    vis = [v for v in vis if math.isfinite(v) and v >= 0]
    return float(np.mean(vis)) if vis else None


def bbox_area_pct(landmarks: list[dict[str, Any]]) -> Optional[float]:
    """Area of the landmark bounding box as a fraction of the (normalized) frame."""
    xs = np.array([lm["x"] for lm in landmarks if lm and lm.get("x") is not None], dtype=float)
    ys = np.array([lm["y"] for lm in landmarks if lm and lm.get("y") is not None], dtype=float)
    xs, ys = xs[np.isfinite(xs)], ys[np.isfinite(ys)]
    if xs.size == 0 or ys.size == 0:
        return None
    bw = float(np.clip(xs.max() - xs.min(), 0.0, 1.0))
    bh = float(np.clip(ys.max() - ys.min(), 0.0, 1.0))
    if bw == 0.0 or bh == 0.0:
        return None
    return bw * bh


def is_leaning(torso_angle: Optional[float]) -> bool:
    if torso_angle is None:
        return False
    return torso_angle > UPRIGHT_TORSO_MAX_DEG or torso_angle < UPRIGHT_TORSO_MIN_DEG


def payload_from_landmarks(
    landmarks: Optional[list[dict[str, Any]]],
    fps: Optional[float] = None,
    rep_mode: Optional[str] = None,
    rep_increment: bool = False,
) -> FrameUpdatePayload:
    """
    Build the tracker payload for one frame. Missing landmarks mean no pose:
    the frame is still counted but carries no signals.
    """
    fps = finite_float(fps)
    if not landmarks:
        return FrameUpdatePayload(has_pose=False, fps=fps, rep_mode=rep_mode)
    angles = joint_angles(landmarks)
    torso = torso_angle_deg(landmarks)
    angles["torso"] = torso
    return FrameUpdatePayload(
        has_pose=True,
        visibility_avg=visibility_avg(landmarks),
        bbox_area_pct=bbox_area_pct(landmarks),
        torso_angle=torso,
        shoulder_sym=_abs_diff(angles["shoulderL"], angles["shoulderR"]),
        knee_sym=_abs_diff(angles["kneeL"], angles["kneeR"]),
        joint_angles=angles,
        fps=fps,
        posture_issue=is_leaning(torso),
        rep_mode=rep_mode,
        rep_increment=rep_increment,
    )
