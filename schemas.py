"""
Database Schemas

Pydantic models for the MongoDB collections and the payloads that create
them. Stored records use snake_case fields and a string id.

Collections:
- profiles: one per user, the green credit aggregate
- pickups: pickup requests
- pickup_items: line items of a pickup
- credit_transactions: append-only credit ledger
- notifications: messages to a user
- ewaste_categories: the e-waste category catalog
- achievements: milestones a donor can reach
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

# Core domain for the app: household e-waste pickups paid out in green credits

PROFILES = "profiles"
PICKUPS = "pickups"
PICKUP_ITEMS = "pickup_items"
CREDIT_TRANSACTIONS = "credit_transactions"
NOTIFICATIONS = "notifications"
EWASTE_CATEGORIES = "ewaste_categories"
ACHIEVEMENTS = "achievements"


class PickupStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    COLLECTOR_ENROUTE = "collector_enroute"
    ARRIVED = "arrived"
    INSPECTING = "inspecting"
    COLLECTED = "collected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PickupStatus.COMPLETED, PickupStatus.CANCELLED)


class TimeSlot(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class ItemCondition(str, Enum):
    WORKING = "working"
    PARTIALLY_WORKING = "partially_working"
    NON_WORKING = "non_working"
    DAMAGED = "damaged"


class UserRole(str, Enum):
    DONOR = "donor"
    COLLECTOR = "collector"
    ADMIN = "admin"


class BadgeLevel(str, Enum):
    SEEDLING = "seedling"
    SPROUT = "sprout"
    TREE = "tree"
    FOREST = "forest"
    EARTH_GUARDIAN = "earth_guardian"


# Ascending (minimum credits, tier). A tier covers [its minimum, next minimum).
BADGE_TIERS = [
    (0, BadgeLevel.SEEDLING),
    (100, BadgeLevel.SPROUT),
    (500, BadgeLevel.TREE),
    (1500, BadgeLevel.FOREST),
    (5000, BadgeLevel.EARTH_GUARDIAN),
]


def badge_level(green_credits: int) -> BadgeLevel:
    level = BADGE_TIERS[0][1]
    for minimum, tier in BADGE_TIERS:
        if green_credits >= minimum:
            level = tier
    return level


# ---------- Profiles ----------

class ProfileIn(BaseModel):
    user_id: str = Field(..., description="Id issued by the auth provider")
    email: str = Field(..., description="Contact email")
    full_name: str = Field(..., description="Display name")
    role: UserRole = Field(UserRole.DONOR, description="donor, collector or admin")
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ProfileUpdate(BaseModel):
    """Fields a user may change themselves. Balances and totals are not here."""
    model_config = {"extra": "forbid"}

    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class Profile(BaseModel):
    """
    Profiles collection schema
    Collection name: "profiles"
    """
    id: str
    email: str
    full_name: str
    role: UserRole = UserRole.DONOR
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    green_credits: int = Field(0, description="Current green credit balance")
    total_items_recycled: int = 0
    total_weight_kg: float = 0
    co2_saved_kg: float = 0
    streak_days: int = 0
    is_verified: bool = False
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    last_activity_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def badge_level(self) -> BadgeLevel:
        return badge_level(self.green_credits)


# ---------- Pickups ----------

class PickupLocation(BaseModel):
    address: str
    city: str
    state: str
    zip_code: str
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    instructions: Optional[str] = None


class PickupSchedule(BaseModel):
    preferred_date: date
    time_slot: TimeSlot = TimeSlot.MORNING


class PickupItemIn(BaseModel):
    category_id: str = Field(..., description="Slug of an e-waste category")
    quantity: int = 1
    condition: ItemCondition = ItemCondition.NON_WORKING
    unit_weight_kg: float = Field(..., description="Estimated weight of one unit")
    description: Optional[str] = None
    ai_detected_label: Optional[str] = None
    ai_confidence: Optional[float] = None


class PickupCreate(BaseModel):
    donor_id: str
    location: PickupLocation
    schedule: PickupSchedule
    items: List[PickupItemIn]
    ai_scan_results: Optional[Dict[str, Any]] = None


class PickupItem(BaseModel):
    """
    Pickup items collection schema
    Collection name: "pickup_items"
    """
    id: str
    pickup_id: str
    category_id: str
    description: Optional[str] = None
    quantity: int = Field(..., ge=1)
    condition: ItemCondition
    unit_weight_kg: float = Field(..., ge=0)
    estimated_weight_kg: float = Field(..., ge=0, description="unit_weight_kg x quantity")
    actual_weight_kg: Optional[float] = None
    ai_detected_label: Optional[str] = None
    ai_confidence: Optional[float] = None
    credits_earned: int = 0
    created_at: Optional[datetime] = None


class PickupRequest(BaseModel):
    """
    Pickup requests collection schema
    Collection name: "pickups"
    """
    id: str
    donor_id: str
    collector_id: Optional[str] = None
    pickup_address: str
    pickup_city: str
    pickup_state: str
    pickup_zip: str
    pickup_latitude: float
    pickup_longitude: float
    pickup_instructions: Optional[str] = None
    preferred_date: date
    preferred_time_slot: TimeSlot
    status: PickupStatus = PickupStatus.PENDING
    total_items: int = Field(..., ge=1)
    estimated_weight_kg: float = Field(..., ge=0)
    actual_weight_kg: Optional[float] = None
    estimated_credits: int = Field(..., ge=0)
    actual_credits_awarded: Optional[int] = None
    ai_scan_results: Optional[Dict[str, Any]] = Field(None, description="Classification evidence")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    matched_at: Optional[datetime] = None
    collected_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class PickupDetail(PickupRequest):
    items: List[PickupItem] = Field(default_factory=list)


class AssignCollector(BaseModel):
    collector_id: str


class UpdateStatus(BaseModel):
    status: str


class CompletePickup(BaseModel):
    actual_weight_kg: float
    actual_credits: int


class AddItems(BaseModel):
    items: List[PickupItemIn]


# ---------- Ledger ----------

class CreditTransaction(BaseModel):
    """
    Credit ledger collection schema
    Collection name: "credit_transactions"
    """
    id: str
    user_id: str
    amount: int = Field(..., description="Signed credit delta")
    type: str = Field(..., description="e.g. pickup_completed")
    description: str
    reference_id: Optional[str] = Field(None, description="Originating pickup id")
    balance_after: Optional[int] = None
    created_at: Optional[datetime] = None


class Award(BaseModel):
    pickup_id: str
    user_id: str
    credits: int
    weight_kg: float
    co2_saved_kg: float
    transaction_id: str
    notification_id: str
    balance_after: int


class LedgerBalance(BaseModel):
    user_id: str
    balance: int
    ledger_total: int
    entries: int

    @computed_field
    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_total


# ---------- Notifications ----------

class Notification(BaseModel):
    """
    Notifications collection schema
    Collection name: "notifications"
    """
    id: str
    user_id: str
    title: str
    body: str
    type: str
    data: Optional[Dict[str, Any]] = None
    is_read: bool = False
    created_at: Optional[datetime] = None


# ---------- Categories & scanning ----------

class HazardLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EwasteCategory(BaseModel):
    """
    E-waste categories collection schema
    Collection name: "ewaste_categories" (id is the slug)
    """
    id: str
    name: str
    slug: str
    description: str
    icon_name: str
    avg_weight_kg: float = Field(..., ge=0)
    green_credits_per_kg: float = Field(..., ge=0)
    co2_saved_per_kg: float = Field(..., ge=0)
    hazard_level: HazardLevel
    estimated_value_per_kg: float = Field(..., ge=0)


class Prediction(BaseModel):
    label: str
    probability: float = Field(..., ge=0, le=1)


class ScanIn(BaseModel):
    predictions: List[Prediction] = Field(default_factory=list, max_length=5)
    threshold: float = Field(0.10, ge=0, le=1)


class ScanDecision(BaseModel):
    label: str
    confidence: float
    is_ewaste: bool
    category: Optional[str] = None
    category_slug: Optional[str] = None
    predictions: List[Prediction] = Field(default_factory=list, description="Classification evidence")


# ---------- Achievements ----------

class RequirementType(str, Enum):
    PICKUPS = "pickups"
    ITEMS_RECYCLED = "items_recycled"
    WEIGHT_KG = "weight_kg"
    STREAK = "streak"


class Achievement(BaseModel):
    """
    Achievements collection schema
    Collection name: "achievements" (id is the slug)
    """
    id: str
    slug: str
    name: str
    description: str
    icon_name: str
    requirement_type: RequirementType
    requirement_value: float = Field(..., gt=0)
    credit_reward: int = Field(..., ge=0, description="Credits the milestone is worth")


class AchievementProgress(Achievement):
    progress: float = Field(0, description="The donor's current value for requirement_type")

    @computed_field
    @property
    def unlocked(self) -> bool:
        return self.progress >= self.requirement_value
