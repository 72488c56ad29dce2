# decision_policy.py - Auto-approval vs. human review decision
# This file contains the pure decision function and the autonomy settings it reads.

import logging
from typing import Optional
from pydantic import BaseModel, Field

from .models import Decision, DecisionResult, clamp_confidence

logger = logging.getLogger(__name__)

DEFAULT_AUTO_APPROVE_THRESHOLD = 0.95

class AutonomyConfig(BaseModel):
    """Runtime autonomy settings, owned by the engine and changed by administrators."""
    autonomous_mode: bool = False
    auto_approve_threshold: float = Field(default=DEFAULT_AUTO_APPROVE_THRESHOLD, ge=0.0, le=1.0)

    def set_autonomous_mode(self, enabled: bool, threshold: Optional[float] = None):
        self.autonomous_mode = enabled
        if threshold is not None:
            self.auto_approve_threshold = clamp_confidence(threshold)
        logger.info(
            f"Autonomous mode {'enabled' if enabled else 'disabled'} "
            f"(threshold {self.auto_approve_threshold})"
        )


def decide(confidence: float, verified: bool, autonomous_mode: bool,
           threshold: float = DEFAULT_AUTO_APPROVE_THRESHOLD) -> DecisionResult:
    """Choose between automatic approval and human review.

    Auto-approval requires all three: autonomous mode on, confidence at or
    above the threshold and a successful verification.
    """
    confidence = clamp_confidence(confidence)
    verified = bool(verified)

    if autonomous_mode and confidence >= threshold and verified:
        return DecisionResult(
            decision=Decision.AUTO_APPROVED,
            reason="High confidence and verified",
            requires_human_review=False,
            confidence=confidence,
            verified=verified,
            threshold=threshold,
            autonomous_mode=autonomous_mode
        )

    if not autonomous_mode:
        reason = "Autonomous mode disabled"
    elif not verified:
        reason = "Not verified by independent sources"
    else:
        reason = f"Confidence {confidence:.2f} below threshold {threshold:.2f}"

    return DecisionResult(
        decision=Decision.REQUIRES_REVIEW,
        reason=reason,
        requires_human_review=True,
        confidence=confidence,
        verified=verified,
        threshold=threshold,
        autonomous_mode=autonomous_mode
    )
