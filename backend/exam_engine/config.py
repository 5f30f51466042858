"""
Runtime configuration for the exam engine.

All values are read from the environment once at import time, with defaults
that match the coaching-institute deployment.
"""

import os

# ──────────────────────────────────────────────────────────────
# Authentication
# ──────────────────────────────────────────────────────────────
JWT_SECRET = os.getenv("JWT_SECRET", "fallback-dev-secret-change-this-in-prod")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# ──────────────────────────────────────────────────────────────
# Attempt policy
# ──────────────────────────────────────────────────────────────
MAX_RESUMES = int(os.getenv("MAX_RESUMES", "1"))        # free re-entries before auto-submit
WARNING_LIMIT = int(os.getenv("WARNING_LIMIT", "3"))    # visibility warnings before auto-submit

DEFAULT_PASSING_PERCENTAGE = float(os.getenv("DEFAULT_PASSING_PERCENTAGE", "40"))
DEFAULT_PER_QUESTION_SECONDS = int(os.getenv("DEFAULT_PER_QUESTION_SECONDS", "60"))
DEFAULT_DURATION_MINUTES = int(os.getenv("DEFAULT_DURATION_MINUTES", "60"))

# Naive deployment timestamps are interpreted in this offset (IST by default)
DEPLOYMENT_UTC_OFFSET_MINUTES = int(os.getenv("DEPLOYMENT_UTC_OFFSET_MINUTES", "330"))

# ──────────────────────────────────────────────────────────────
# Analytics
# ──────────────────────────────────────────────────────────────
LEADERBOARD_SIZE = int(os.getenv("LEADERBOARD_SIZE", "10"))
