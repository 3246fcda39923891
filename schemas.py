import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

JobStatus = Literal["active", "inactive"]
ApplicationStatus = Literal["pending", "accepted", "rejected"]
ActivityType = Literal[
    "new_job",
    "new_user",
    "new_application",
    "admin_granted",
    "admin_revoked",
]
ExplorationPhase = Literal[
    "actively_looking",
    "open_to_opportunities",
    "casually_browsing",
    "not_interested",
]
BoardView = Literal["all", "new", "applied"]

LINKEDIN_URL_RE = re.compile(r"^https://(www\.)?linkedin\.com/in/[\w-]+/?$")


class CamelModel(BaseModel):
    """Documents travel as camelCase JSON, attributes stay snake_case."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def split_tech_stack(value: Any) -> List[str]:
    if isinstance(value, str):
        value = value.split(",")
    return [str(skill).strip() for skill in value if str(skill).strip()]


# --- Identity ---
class Identity(CamelModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None


# --- Jobs ---
class JobFields(CamelModel):
    client_name: str = Field(min_length=1)
    position_name: str = Field(min_length=1)
    location: str = Field(min_length=1)
    exp_min: int = Field(0, ge=0)
    exp_max: Optional[int] = None
    tech_stack: List[str] = Field(default_factory=list)
    domain: str = Field(min_length=1)
    number_of_positions: int = Field(1, ge=1)

    @model_validator(mode="after")
    def check_experience_range(self):
        if self.exp_max is not None and self.exp_max < self.exp_min:
            raise ValueError("Max experience cannot be below min experience")
        return self


class JobCreate(JobFields):
    """Admin job form. Tech stack may arrive as a comma separated string."""

    tech_stack: List[str] = Field(min_length=1)

    @field_validator("client_name", "position_name", "location", "domain", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("tech_stack", mode="before")
    @classmethod
    def parse_tech_stack(cls, value):
        return split_tech_stack(value)


class JobDraft(JobFields):
    status: JobStatus = "active"
    created_at: datetime
    total_applications: int = 0


class JobPosting(JobFields):
    id: str
    status: JobStatus
    created_at: datetime
    created_by: Optional[str] = None
    total_applications: int = 0

    @property
    def experience_label(self) -> str:
        if not self.exp_max:
            return f"{self.exp_min}+ years"
        return f"{self.exp_min}-{self.exp_max} years"


class JobSummary(CamelModel):
    id: str
    position_name: str
    client_name: str
    domain: Optional[str] = None


# --- Users ---
class UserProfileCreate(CamelModel):
    phone_number: str = Field(min_length=1)
    linkedin_url: str
    interested_roles: str = Field(min_length=1)
    exploration_phase: ExplorationPhase
    referral_source: Optional[str] = None

    @field_validator("linkedin_url")
    @classmethod
    def check_linkedin_url(cls, value: str) -> str:
        value = value.strip()
        if not LINKEDIN_URL_RE.match(value):
            raise ValueError(
                "Please enter a valid LinkedIn profile URL "
                "(e.g., https://linkedin.com/in/username)"
            )
        return value


class User(CamelModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_src: Optional[str] = None
    is_admin: bool = False
    created_at: datetime
    phone_number: Optional[str] = None
    linkedin_url: Optional[str] = None
    interested_roles: Optional[str] = None
    exploration_phase: Optional[str] = None
    referral_source: Optional[str] = None


class ApplicantSummary(CamelModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    linkedin_url: Optional[str] = None
    interested_roles: Optional[str] = None
    exploration_phase: Optional[str] = None
    avatar_src: Optional[str] = None


class AdminUpdate(CamelModel):
    is_admin: bool


# --- Applications ---
class Application(CamelModel):
    id: str
    user_id: str
    job_id: str
    applied_at: datetime
    status: ApplicationStatus
    user: Optional[ApplicantSummary] = None
    job: Optional[JobSummary] = None


class ApplicationDecision(CamelModel):
    status: Literal["accepted", "rejected"]


# --- Activities ---
class Activity(CamelModel):
    id: str
    type: ActivityType
    message: str
    timestamp: datetime
    data: Dict[str, Any] = Field(default_factory=dict)


class DashboardStats(CamelModel):
    total_users: int
    active_jobs: int
    applications: int


class Dashboard(CamelModel):
    stats: DashboardStats
    recent_activities: List[Activity]


# --- Session ---
class SessionInfo(CamelModel):
    identity: Optional[Identity] = None
    user: Optional[User] = None
    route: Literal["anonymous", "signup", "candidate", "admin"]


# --- Listings ---
class FilterUpdate(CamelModel):
    query: Optional[str] = None
    facets: Dict[str, str] = Field(default_factory=dict)


class ListView(CamelModel):
    items: List[Any]
    total: int
    page: int
    pages: int
    query: str = ""
    facets: Dict[str, str] = Field(default_factory=dict)
    facet_options: Dict[str, List[str]] = Field(default_factory=dict)


class ImportResult(CamelModel):
    status: Literal["completed", "failed"]
    total: int
    processed: int
    job_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class JobBoard(ListView):
    view: BoardView = "all"
    tab_counts: Dict[str, int] = Field(default_factory=dict)
