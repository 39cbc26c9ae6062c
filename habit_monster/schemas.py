"""
Document schemas for Habit Monster.

Each entity model maps to one collection in the document store:
- User  -> "users"
- Habit -> "habits"

Field names are snake_case in Python and camelCase in stored documents and
JSON payloads. Request bodies for the HTTP layer live at the bottom.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from bson.objectid import ObjectId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

USERS = "users"
HABITS = "habits"

DEFAULT_MONSTER = "shadow_beast"
DEFAULT_HABIT_COLOR = "#4F46E5"


def new_id():
    return str(ObjectId())


def utcnow():
    return datetime.now(timezone.utc)


class HabitType(str, Enum):
    SOLO = "solo"
    BATTLE = "battle"


class BattleStatus(str, Enum):
    PENDING = "pending"      # invitee, before responding
    WAITING = "waiting"      # creator, before the invitee responds
    ACTIVE = "active"
    COMPLETED = "completed"
    REJECTED = "rejected"


class FriendRequestStatus(str, Enum):
    PENDING = "pending"
    REJECTED = "rejected"


class RepIncrementFrequency(str, Enum):
    NONE = "none"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
    )

    def to_document(self):
        """Dump in the shape the store keeps (aliases, native datetimes)."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_document(cls, doc):
        return cls.model_validate(doc)


# --- USER ---

class HellWeek(Document):
    is_active: bool = False
    start_date: Optional[datetime] = None
    target_date: Optional[datetime] = None


class FriendRequest(Document):
    from_user: str = Field(..., alias="from")
    status: FriendRequestStatus = FriendRequestStatus.PENDING
    timestamp: datetime = Field(default_factory=utcnow)


class User(Document):
    id: str = Field(default_factory=new_id, alias="_id")
    email: str
    password: str
    platform_xp: int = Field(0, ge=0)
    level: int = Field(1, ge=1)
    monster_type: str = DEFAULT_MONSTER
    hell_week: HellWeek = Field(default_factory=HellWeek)
    created_at: datetime = Field(default_factory=utcnow)
    friend_code: Optional[str] = None
    friends: List[str] = Field(default_factory=list)
    friend_requests: List[FriendRequest] = Field(default_factory=list)

    def public(self):
        """JSON-safe payload without the password hash."""
        return self.model_dump(by_alias=True, mode="json", exclude={"password"})

    def summary(self):
        return {"_id": self.id, "email": self.email, "level": self.level}


# --- HABIT ---

class Habit(Document):
    id: str = Field(default_factory=new_id, alias="_id")
    user_id: str
    name: str = Field(..., min_length=1)
    rules: str = ""
    color: str = DEFAULT_HABIT_COLOR
    completed_dates: List[str] = Field(default_factory=list)
    # date -> when XP was paid for it
    xp_granted_dates: Dict[str, datetime] = Field(default_factory=dict)
    current_streak: int = 0
    longest_streak: int = 0

    is_rep_based: bool = False
    reps: int = 0
    rep_unit: str = "reps"
    rep_increment: int = 0
    rep_increment_frequency: RepIncrementFrequency = RepIncrementFrequency.NONE
    next_increment_date: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)

    partner_id: Optional[str] = None
    shared_group_id: Optional[str] = None
    type: HabitType = HabitType.SOLO
    battle_status: BattleStatus = BattleStatus.ACTIVE
    battle_duration: int = Field(7, ge=1)
    battle_start_date: Optional[datetime] = None
    battle_winner: Optional[str] = None
    is_visible: bool = True

    @property
    def is_battle(self):
        return self.type == HabitType.BATTLE

    def public(self):
        return self.model_dump(by_alias=True, mode="json")


# --- REQUEST BODIES ---

class Credentials(Document):
    email: Optional[str] = None
    password: Optional[str] = None


class HabitCreate(Document):
    user_id: Optional[str] = None
    name: Optional[str] = None
    rules: str = ""
    color: str = DEFAULT_HABIT_COLOR
    is_rep_based: bool = False
    reps: int = 0
    rep_unit: str = "reps"
    rep_increment: int = 0
    rep_increment_frequency: RepIncrementFrequency = RepIncrementFrequency.NONE
    partner_id: Optional[str] = None
    battle_duration: Optional[int] = Field(None, ge=1)


class HabitUpdate(Document):
    name: Optional[str] = Field(None, min_length=1)
    rules: Optional[str] = None
    color: Optional[str] = None
    is_rep_based: Optional[bool] = None
    reps: Optional[int] = None
    rep_unit: Optional[str] = None
    rep_increment: Optional[int] = None
    rep_increment_frequency: Optional[RepIncrementFrequency] = None


class ToggleRequest(Document):
    date: str


class ActionRequest(Document):
    action: str


class BattleActionRequest(Document):
    habit_id: str
    action: Optional[str] = None


class FriendCodeRequest(Document):
    user_id: str
    friend_code: Optional[str] = None


class FriendRequestAction(Document):
    user_id: str
    requester_id: str
    action: str
