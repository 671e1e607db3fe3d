"""
Feedback copy — built-in messages shown after a capture and in notifications.

Static lookup only. Milestone copy uses a fixed four-tier mapping on streak
length: encouragement (<=7), consistency (<=30), achievement (<=90),
legendary (>90).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from progresspal.services.notifier import NotificationKind, NotificationPayload


@dataclass
class MilestoneTier:
    name: str
    max_streak: float
    emoji: str
    body: str


MILESTONE_TIERS: List[MilestoneTier] = [
    MilestoneTier(
        name="encouragement",
        max_streak=7,
        emoji="🔥",
        body="You're building momentum! Keep going strong!",
    ),
    MilestoneTier(
        name="consistency",
        max_streak=30,
        emoji="💪",
        body="Amazing consistency! Your dedication is showing results!",
    ),
    MilestoneTier(
        name="achievement",
        max_streak=90,
        emoji="🚀",
        body="Incredible! You're a progress tracking champion!",
    ),
    MilestoneTier(
        name="legendary",
        max_streak=float("inf"),
        emoji="👑",
        body="LEGENDARY! You're an inspiration to everyone!",
    ),
]

ANGLE_FEEDBACK: Dict[str, str] = {
    "front": "Perfect positioning! Your front view shows great symmetry. Keep up the consistency!",
    "side": "Excellent side profile! This angle clearly shows your progress. Stay motivated!",
    "back": "Great back view! This perspective captures important muscle development areas.",
}


def milestone_tier(streak: int) -> MilestoneTier:
    for tier in MILESTONE_TIERS:
        if streak <= tier.max_streak:
            return tier
    return MILESTONE_TIERS[-1]


def milestone_payload(streak: int) -> NotificationPayload:
    tier = milestone_tier(streak)
    return NotificationPayload(
        title=f"{tier.emoji} {streak} Day Streak!",
        body=tier.body,
        data={"type": NotificationKind.STREAK_CELEBRATION, "streakDays": streak, "tier": tier.name},
    )


def angle_feedback(angle: str) -> str:
    return ANGLE_FEEDBACK.get(angle, "Photo saved. Keep up the consistency!")


def streak_message(current_streak: int) -> str:
    """One-liner shown after a capture."""
    if current_streak > 1:
        return f"Amazing! You're on a {current_streak}-day streak!"
    return "Great start! Keep it up to build your streak!"


DAILY_REMINDER_PAYLOAD = NotificationPayload(
    title="📸 Time for your progress photo!",
    body="Don't break your streak! Take today's progress photo to keep your momentum going.",
    data={"type": NotificationKind.DAILY_REMINDER},
)

GRACE_REMINDER_PAYLOAD = NotificationPayload(
    title="⏰ Don't lose your streak!",
    body="You haven't taken your progress photo today. Take it now to keep your streak alive!",
    data={"type": NotificationKind.GRACE_REMINDER},
)


def weekly_progress_payload(total_photos: int) -> NotificationPayload:
    body = "Check out your weekly progress and see how far you've come!"
    if total_photos > 0:
        body += f" {total_photos} photos captured so far."
    return NotificationPayload(
        title="📊 Weekly Progress Update",
        body=body,
        data={"type": NotificationKind.WEEKLY_PROGRESS},
    )


TEST_PAYLOAD = NotificationPayload(
    title="🧪 Test Notification",
    body="This is a test notification from ProgressPal!",
    data={"type": NotificationKind.TEST},
)


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Holds every user-facing string the core produces: per-angle feedback,
#   the post-capture streak line, the four milestone tiers and the fixed
#   reminder payloads.
#
# Data flow:
#   ProgressService.take_photo → angle_feedback / streak_message → UI
#   NotificationScheduler.notify_streak_milestone → milestone_payload → Notifier
