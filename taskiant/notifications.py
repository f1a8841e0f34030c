"""
Notification payloads for Pomodoro and timer events.

Only the title/body contract lives here; showing the notification is up to
the hosting shell.
"""

from dataclasses import asdict, dataclass
from enum import Enum


class NotificationKind(str, Enum):
    """Which timer phase just ended."""

    WORK = "work"
    SHORT = "short"
    LONG = "long"


@dataclass(frozen=True)
class NotificationPayload:
    title: str
    body: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


_TITLES = {
    NotificationKind.WORK: "🍅 Pomodoro Complete!",
    NotificationKind.SHORT: "☕ Break Over!",
    NotificationKind.LONG: "🎉 Long Break Over!",
}


def _coerce_kind(kind: NotificationKind | str | None) -> NotificationKind:
    try:
        return NotificationKind(kind)
    except ValueError:
        return NotificationKind.WORK


def pomodoro_notification(
    task_title: str,
    session_number: int,
    kind: NotificationKind | str = NotificationKind.WORK,
) -> NotificationPayload:
    """
    Build the notification shown when a timer phase ends.

    Unknown kinds are treated as a finished work session.
    """
    resolved = _coerce_kind(kind)
    if resolved is NotificationKind.SHORT:
        body = "Ready to focus again? Start your next pomodoro!"
    elif resolved is NotificationKind.LONG:
        body = "Feeling refreshed? Let's get back to work!"
    else:
        body = f'Great work on "{task_title}"! Session #{session_number} complete. Time for a break.'
    return NotificationPayload(title=_TITLES[resolved], body=body)


def generic_notification(title: str, body: str) -> NotificationPayload:
    return NotificationPayload(title=title, body=body)
