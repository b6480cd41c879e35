"""
Typed state for stateful rules.

Persisted as plain JSON under the reserved ``_state`` key; all timestamps
are integer Unix seconds.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RequestLimitState(BaseModel):
    """Countdown of remaining views."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    remaining: int = Field(..., ge=0)
    initialized_at: int
    last_used_at: Optional[int] = None


class TimeLimitState(BaseModel):
    """Access window opened on first use."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    first_used_at: int
    expires_at: int
    last_used_at: Optional[int] = None
