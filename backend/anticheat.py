"""Anti-cheat violation policy: count reported violations, kick at the threshold."""

from __future__ import annotations

from models import ANTI_CHEAT_KICK_REASON, Session, ViolationOutcome, ViolationType
from participants import get_participant, kick
from session_machine import ensure_open

DEFAULT_MAX_VIOLATIONS = 3


def report_violation(
    session: Session,
    participant_id: str,
    violation_type: ViolationType,
    max_violations: int = DEFAULT_MAX_VIOLATIONS,
) -> ViolationOutcome:
    """Apply one classified violation event.

    Must run inside the same serialized command as the write that persists it,
    otherwise two concurrent reports could both observe count == threshold.
    """
    ensure_open(session)
    participant = get_participant(session, participant_id)

    if not participant.is_active:
        return ViolationOutcome(
            participantId=participant_id,
            violationCount=participant.violationCount,
            kicked=False,
            alreadyInactive=True,
        )

    participant.violationCount += 1
    participant.violations[violation_type] = participant.violations.get(violation_type, 0) + 1

    kicked = False
    if participant.violationCount >= max_violations:
        kicked = kick(session, participant_id, ANTI_CHEAT_KICK_REASON)

    return ViolationOutcome(
        participantId=participant_id,
        violationCount=participant.violationCount,
        kicked=kicked,
    )
