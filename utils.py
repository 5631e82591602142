from __future__ import annotations

import os
import shutil


# -----------------------------
# Utilities
# -----------------------------

def have_exe(name: str) -> bool:
    return shutil.which(name) is not None

def clamp(x: float, lo: float, hi: float) -> float:
    return lo if x < lo else hi if x > hi else x

def safe_float(x: str, default: float = 0.0) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return default

def env_flag(name: str) -> bool:
    value = os.environ.get(name, "").strip().lower()
    return value in {"1", "true", "yes", "on"}
