from datetime import datetime
from typing import Optional, List, Dict
from sqlmodel import SQLModel, Field, Column, JSON, UniqueConstraint
from enum import Enum
import secrets
import uuid
import logging

from core.goals import GoalType, Timeframe, GoalProgress, MemberProgress
from core.reminders import RequestStatus, DEFAULT_REMINDER_INTERVALS
from time_utils import utc_now

####################
#    DB Models     #
####################

class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    INVITE_ONLY = "invite_only"

class FormationType(str, Enum):
    GENERAL = "general"
    ACADEMIC_LEVEL = "academic_level"
    FIELD_OF_STUDY = "field_of_study"
    GEOGRAPHIC = "geographic"
    ACTIVITY_BASED = "activity_based"

class SquadType(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"

class RequestPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class User(SQLModel, table=True):
    id: str = Field(default_factory=lambda: "user_" + str(uuid.uuid4()), primary_key=True)
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=1, max_length=500, unique=True)
    password_hash: str = Field(min_length=1, max_length=255)
    last_login: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)

class Squad(SQLModel, table=True):
    id: str = Field(default_factory=lambda: "squad_" + str(uuid.uuid4()), primary_key=True)
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    max_members: int = Field(ge=2, le=12)
    visibility: Visibility = Field(default=Visibility.INVITE_ONLY)
    formation_type: FormationType = Field(default=FormationType.GENERAL)
    squad_type: SquadType = Field(default=SquadType.PRIMARY)
    creator_id: str = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

class SquadMember(SQLModel, table=True):
    __tablename__ = "squad_member"
    __table_args__ = (UniqueConstraint("squad_id", "user_id"),)

    id: str = Field(default_factory=lambda: "squad_member_" + str(uuid.uuid4()), primary_key=True)
    squad_id: str = Field(foreign_key="squad.id", index=True)
    user_id: str = Field(foreign_key="user.id", index=True)
    joined_at: datetime = Field(default_factory=utc_now)

class SquadGoal(SQLModel, table=True):
    __tablename__ = "squad_goal"

    id: str = Field(default_factory=lambda: "goal_" + str(uuid.uuid4()), primary_key=True)
    squad_id: str = Field(foreign_key="squad.id", index=True)

    type: GoalType
    target: int = Field(ge=1)
    individual_target: Optional[int] = Field(default=None, ge=1)
    timeframe: Timeframe
    start_date: datetime
    end_date: datetime
    description: Optional[str] = Field(default=None, max_length=500)

    # member id -> {"progress", "target", "last_activity"}; aggregates are derived, never stored
    member_progress: Dict[str, Dict] = Field(default_factory=dict, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utc_now)

    def to_entity(self) -> GoalProgress:
        """Build the domain goal from this row."""
        members = {}
        for member_id, data in (self.member_progress or {}).items():
            last_activity = data.get("last_activity")
            members[member_id] = MemberProgress(
                member_id=member_id,
                target=data["target"],
                progress=data.get("progress", 0),
                last_activity=datetime.fromisoformat(last_activity) if last_activity else None,
            )
        return GoalProgress(
            type=GoalType(self.type),
            target=self.target,
            timeframe=Timeframe(self.timeframe),
            start_date=self.start_date,
            end_date=self.end_date,
            individual_target=self.individual_target,
            description=self.description,
            member_progress=members,
        )

    def apply_entity(self, goal: GoalProgress) -> None:
        # Assign a fresh dict so the JSON column is flagged as changed
        self.member_progress = {
            member_id: {
                "progress": mp.progress,
                "target": mp.target,
                "last_activity": mp.last_activity.isoformat() if mp.last_activity else None,
            }
            for member_id, mp in goal.member_progress.items()
        }

class Recipient(SQLModel, table=True):
    id: str = Field(default_factory=lambda: "recipient_" + str(uuid.uuid4()), primary_key=True)
    created_by: str = Field(foreign_key="user.id", index=True)
    name: str = Field(min_length=1, max_length=200)
    primary_email: Optional[str] = Field(default=None, max_length=500)
    title: Optional[str] = Field(default=None, max_length=200)
    institution: Optional[str] = Field(default=None, max_length=200)
    created_at: datetime = Field(default_factory=utc_now)

class RecommendationRequest(SQLModel, table=True):
    __tablename__ = "recommendation_request"

    id: str = Field(default_factory=lambda: "recommendation_" + str(uuid.uuid4()), primary_key=True)
    student_id: str = Field(foreign_key="user.id", index=True)
    recipient_id: str = Field(foreign_key="recipient.id", index=True)

    # Request details
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    deadline: datetime = Field(index=True)
    priority: RequestPriority = Field(default=RequestPriority.MEDIUM)
    include_draft: bool = Field(default=False)
    draft_content: Optional[str] = Field(default=None, max_length=10000)

    # Status tracking
    status: RequestStatus = Field(default=RequestStatus.PENDING, index=True)
    sent_at: Optional[datetime] = None
    received_at: Optional[datetime] = None

    # Reminders, days before the deadline
    reminder_intervals: List[int] = Field(default_factory=lambda: list(DEFAULT_REMINDER_INTERVALS), sa_column=Column(JSON))
    last_reminder_sent: Optional[datetime] = None
    next_reminder_date: Optional[datetime] = Field(default=None, index=True)

    # Recipient portal access
    secure_token: str = Field(default_factory=lambda: secrets.token_urlsafe(32), unique=True, index=True)
    token_expires_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

class RecommendationLetter(SQLModel, table=True):
    __tablename__ = "recommendation_letter"

    id: str = Field(default_factory=lambda: "letter_" + str(uuid.uuid4()), primary_key=True)
    request_id: str = Field(foreign_key="recommendation_request.id", index=True)
    recipient_id: str = Field(foreign_key="recipient.id", index=True)
    content: Optional[str] = Field(default=None, max_length=20000)
    file_name: Optional[str] = Field(default=None, max_length=500)
    file_url: Optional[str] = Field(default=None, max_length=2000)
    file_type: Optional[str] = Field(default=None, max_length=100)
    file_size: Optional[int] = Field(default=None, ge=0)
    version: int = Field(default=1, ge=1)
    submitted_at: datetime = Field(default_factory=utc_now)

####################
#   DB Functions   #
####################

def create_db_and_tables(engine):
    logging.info("Creating database and tables...")
    try:
        SQLModel.metadata.create_all(engine)
        logging.info("Database and tables created successfully")
    except Exception as e:
        logging.error(f"Error creating database and tables: {e}")
        raise


####################
#   Auth Models    #
####################

class UserCreate(SQLModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=1, max_length=500)
    password: str = Field(min_length=8, max_length=32)

class UserLogin(SQLModel):
    email: str = Field(min_length=1, max_length=500)
    password: str = Field(min_length=8, max_length=32)

class Token(SQLModel):
    access_token: str
    token_type: str

class UserResponse(SQLModel):
    id: str
    name: str
    email: str
    last_login: datetime
    created_at: datetime

####################
#  Squad Models    #
####################

class SquadCreate(SQLModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    max_members: int = Field(ge=2, le=12)
    visibility: Visibility = Visibility.INVITE_ONLY
    formation_type: FormationType = FormationType.GENERAL
    squad_type: SquadType = SquadType.PRIMARY

class SquadRead(SQLModel):
    id: str
    name: str
    description: str
    max_members: int
    visibility: Visibility
    formation_type: FormationType
    squad_type: SquadType
    creator_id: str
    member_ids: List[str]
    created_at: datetime

class GoalCreate(SQLModel):
    type: GoalType
    target: int = Field(ge=1)
    timeframe: Timeframe
    start_date: datetime
    end_date: datetime
    description: Optional[str] = Field(default=None, max_length=500)
    individual_target: Optional[int] = Field(default=None, ge=1)

class ProgressUpdate(SQLModel):
    goal_id: str
    progress: int = Field(ge=0)

class MemberProgressRead(SQLModel):
    member_id: str
    progress: int
    target: int
    percentage: int
    last_activity: Optional[datetime]
    needs_help: bool
    is_on_track: bool

class GoalRead(SQLModel):
    id: str
    squad_id: str
    type: GoalType
    target: int
    individual_target: Optional[int]
    timeframe: Timeframe
    start_date: datetime
    end_date: datetime
    description: Optional[str]
    current_progress: int
    progress_percentage: int
    days_remaining: int
    is_on_track: bool
    member_progress: List[MemberProgressRead]

class ProgressSummaryRead(SQLModel):
    total_goals: int
    completed_goals: int
    on_track_goals: int
    members_needing_help: int
    average_progress: int

class SquadActivityRead(SQLModel):
    total_applications: int
    total_documents: int
    total_reviews: int
    average_activity_score: int
    activity_level: str
    completion_percentage: int

class SquadProgressResponse(SQLModel):
    squad_id: str
    progress_summary: ProgressSummaryRead
    activity: SquadActivityRead
    goals: List[GoalRead]

#############################
# Recommendation Models     #
#############################

class RecipientCreate(SQLModel):
    name: str = Field(min_length=1, max_length=200)
    primary_email: str = Field(min_length=3, max_length=500)
    title: Optional[str] = Field(default=None, max_length=200)
    institution: Optional[str] = Field(default=None, max_length=200)

class RecipientUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    primary_email: Optional[str] = Field(default=None, min_length=3, max_length=500)
    title: Optional[str] = Field(default=None, max_length=200)
    institution: Optional[str] = Field(default=None, max_length=200)

class RecommendationRequestCreate(SQLModel):
    recipient_id: str
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    deadline: datetime
    priority: RequestPriority = RequestPriority.MEDIUM
    include_draft: bool = False
    draft_content: Optional[str] = Field(default=None, max_length=10000)
    reminder_intervals: Optional[List[int]] = None

class RecommendationRequestRead(SQLModel):
    id: str
    student_id: str
    recipient_id: str
    title: str
    description: str
    deadline: datetime
    priority: RequestPriority
    status: RequestStatus
    sent_at: Optional[datetime]
    received_at: Optional[datetime]
    reminder_intervals: List[int]
    last_reminder_sent: Optional[datetime]
    next_reminder_date: Optional[datetime]
    created_at: datetime

class LetterSubmit(SQLModel):
    content: Optional[str] = Field(default=None, max_length=20000)
    file_name: Optional[str] = Field(default=None, max_length=500)
    file_url: Optional[str] = Field(default=None, max_length=2000)
    file_type: Optional[str] = Field(default=None, max_length=100)
    file_size: Optional[int] = Field(default=None, ge=0)

class LetterRead(SQLModel):
    id: str
    request_id: str
    content: Optional[str]
    file_name: Optional[str]
    file_url: Optional[str]
    version: int
    submitted_at: datetime

class RecipientPortalRead(SQLModel):
    request_id: str
    title: str
    description: str
    deadline: datetime
    status: RequestStatus
    student_name: str
    recipient_name: str
    draft_content: Optional[str]
    existing_letter: Optional[LetterRead]
