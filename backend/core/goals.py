from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, Optional

from time_utils import days_between, round_half_up

NEEDS_HELP_THRESHOLD = 25
ON_TRACK_THRESHOLD = 75
ACTIVE_WINDOW_DAYS = 7


class GoalType(str, Enum):
    APPLICATIONS_STARTED = "applications_started"
    APPLICATIONS_COMPLETED = "applications_completed"
    DOCUMENTS_CREATED = "documents_created"
    PEER_REVIEWS_PROVIDED = "peer_reviews_provided"
    DAYS_ACTIVE = "days_active"
    STREAK_DAYS = "streak_days"
    SQUAD_ACTIVITY = "squad_activity"


class Timeframe(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ONGOING = "ongoing"


class ActivityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def percentage_of(progress: int, target: int) -> int:
    return round_half_up(progress / target * 100)


@dataclass
class MemberProgress:
    member_id: str
    target: int
    progress: int = 0
    last_activity: Optional[datetime] = None

    @property
    def percentage(self) -> int:
        return percentage_of(self.progress, self.target)

    @property
    def needs_help(self) -> bool:
        return self.percentage < NEEDS_HELP_THRESHOLD

    @property
    def is_on_track(self) -> bool:
        return self.percentage >= ON_TRACK_THRESHOLD


@dataclass
class GoalProgress:
    """
    A time-boxed squad goal together with each member's contribution.

    Aggregate fields are properties over ``member_progress`` so they can never
    drift from the member records. ``member_progress`` is keyed by member id,
    which makes a member appear at most once.
    """
    type: GoalType
    target: int
    timeframe: Timeframe
    start_date: datetime
    end_date: datetime
    individual_target: Optional[int] = None
    description: Optional[str] = None
    member_progress: Dict[str, MemberProgress] = field(default_factory=dict)

    def __post_init__(self):
        if self.target < 1:
            raise ValueError("Goal target must be at least 1")
        if self.individual_target is not None and self.individual_target < 1:
            raise ValueError("Individual target must be at least 1")
        if self.end_date <= self.start_date:
            raise ValueError("Goal end date must be after its start date")

    @property
    def member_target(self) -> int:
        return self.individual_target or self.target

    @property
    def current_progress(self) -> int:
        return sum(mp.progress for mp in self.member_progress.values())

    @property
    def progress_percentage(self) -> int:
        return percentage_of(self.current_progress, self.target)

    @property
    def is_on_track(self) -> bool:
        return self.progress_percentage >= ON_TRACK_THRESHOLD

    @property
    def is_completed(self) -> bool:
        return self.progress_percentage >= 100

    def days_remaining(self, now: datetime) -> int:
        """Days until the end date; negative once the goal is overdue."""
        return days_between(now, self.end_date)


@dataclass
class ProgressSummary:
    total_goals: int = 0
    completed_goals: int = 0
    on_track_goals: int = 0
    members_needing_help: int = 0
    average_progress: int = 0


@dataclass
class SquadActivity:
    total_applications: int = 0
    total_documents: int = 0
    total_reviews: int = 0
    average_activity_score: int = 0
    activity_level: ActivityLevel = ActivityLevel.LOW
    completion_percentage: int = 0


def record_progress(goal: GoalProgress, member_id: str, new_progress: int, now: datetime) -> MemberProgress:
    """
    Set a member's cumulative progress on a goal.

    Creates the member record on first report, measured against the goal's
    individual target (or the group target when none is set).
    """
    if new_progress < 0:
        raise ValueError("Progress cannot be negative")

    member = goal.member_progress.get(member_id)
    if member is None:
        member = MemberProgress(member_id=member_id, target=goal.member_target)
        goal.member_progress[member_id] = member

    member.progress = new_progress
    member.last_activity = now
    return member


def summarize(goals: Iterable[GoalProgress], member_ids: Optional[Iterable[str]] = None) -> ProgressSummary:
    """
    Squad-level progress summary. When ``member_ids`` is given, records left
    behind by former members are not counted as needing help.
    """
    goals = list(goals)
    if not goals:
        return ProgressSummary()

    needing_help = {
        mp.member_id
        for goal in goals
        for mp in goal.member_progress.values()
        if mp.needs_help
    }
    if member_ids is not None:
        needing_help &= set(member_ids)
    return ProgressSummary(
        total_goals=len(goals),
        completed_goals=len([g for g in goals if g.is_completed]),
        on_track_goals=len([g for g in goals if g.is_on_track]),
        members_needing_help=len(needing_help),
        average_progress=round_half_up(sum(g.progress_percentage for g in goals) / len(goals)),
    )


def activity_level(score: int) -> ActivityLevel:
    if score >= 80:
        return ActivityLevel.HIGH
    if score >= 50:
        return ActivityLevel.MEDIUM
    return ActivityLevel.LOW


def squad_activity(goals: Iterable[GoalProgress], member_ids: Iterable[str], now: datetime) -> SquadActivity:
    """Squad-wide rollups shown on the squad dashboard. Only current members count as active."""
    goals = list(goals)
    members = set(member_ids)

    def total_for(*types: GoalType) -> int:
        return sum(g.current_progress for g in goals if g.type in types)

    active_since = now - timedelta(days=ACTIVE_WINDOW_DAYS)
    active_members = {
        mp.member_id
        for goal in goals
        for mp in goal.member_progress.values()
        if mp.member_id in members and mp.last_activity is not None and mp.last_activity >= active_since
    }
    score = percentage_of(len(active_members), len(members)) if members else 0
    completion = round_half_up(sum(g.progress_percentage for g in goals) / len(goals)) if goals else 0

    return SquadActivity(
        total_applications=total_for(GoalType.APPLICATIONS_STARTED, GoalType.APPLICATIONS_COMPLETED),
        total_documents=total_for(GoalType.DOCUMENTS_CREATED),
        total_reviews=total_for(GoalType.PEER_REVIEWS_PROVIDED),
        average_activity_score=score,
        activity_level=activity_level(score),
        completion_percentage=completion,
    )
