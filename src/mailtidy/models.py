"""Dataclasses and enums shared by sync, analysis and reporting."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Category(str, Enum):
    NEWSLETTER = "newsletter"
    PROMOTIONAL = "promotional"
    SOCIAL = "social"
    PERSONAL = "personal"
    AUTOMATED = "automated"
    TRANSACTIONAL = "transactional"
    SPAM = "spam"
    BUSINESS = "business"
    UNKNOWN = "unknown"


class Recommendation(str, Enum):
    DELETE = "delete"
    ARCHIVE = "archive"  # counted as delete for savings
    KEEP = "keep"

    @property
    def is_delete(self) -> bool:
        return self in (Recommendation.DELETE, Recommendation.ARCHIVE)


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Level(str, Enum):
    """Priority and space impact, reported in full mode only."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AnalysisMode(str, Enum):
    FAST = "fast"
    FULL = "full"
    AUTO = "auto"


class AnalysisType(str, Enum):
    CLEANUP = "cleanup"
    SENDER_FREQUENCY = "sender_frequency"


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TimeRange(str, Enum):
    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "3m"
    HALF_YEAR = "6m"
    YEAR = "1y"
    ALL = "all"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Serialize a datetime as a sortable UTC ISO-8601 string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def from_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class Attachment:
    filename: str
    size: int = 0


@dataclass
class Message:
    gmail_id: str
    thread_id: str | None = None
    subject: str = ""
    sender_email: str = ""
    sender_name: str = ""
    sender: str = ""  # raw From header
    recipient: str = ""
    date: datetime = field(default_factory=utcnow)
    size: int = 0
    labels: list[str] = field(default_factory=list)
    snippet: str = ""
    attachments: list[Attachment] = field(default_factory=list)
    category: Category | None = None
    last_synced: datetime | None = None

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


@dataclass
class SyncOptions:
    time_range: TimeRange = TimeRange.MONTH
    exclude_spam: bool = True
    exclude_trash: bool = True
    max_email_size_mb: int = 0

    def __post_init__(self):
        self.time_range = TimeRange(self.time_range)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["time_range"] = self.time_range.value
        return data


@dataclass
class SyncResult:
    total_emails: int
    new_emails: int
    deleted_emails: int
    session_id: str


@dataclass
class SyncStatus:
    in_progress: bool = False
    last_sync: str | None = None
    total_emails: int = 0
    error_message: str | None = None


@dataclass
class SyncSession:
    id: str
    user_email: str
    started_at: str
    status: SessionStatus = SessionStatus.IN_PROGRESS
    completed_at: str | None = None
    options: dict = field(default_factory=dict)
    start_date: str | None = None
    end_date: str | None = None
    emails_processed: int = 0
    total_emails: int = 0
    current_batch: int = 0
    total_batches: int = 0
    error_message: str | None = None


@dataclass
class AnalysisRequest:
    """What the user asked to analyze."""
    query: str = ""
    description: str = ""
    limit: int = 100
    mode: AnalysisMode = AnalysisMode.AUTO
    analysis_type: AnalysisType = AnalysisType.CLEANUP

    def __post_init__(self):
        self.mode = AnalysisMode(self.mode)
        self.analysis_type = AnalysisType(self.analysis_type)


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    ai_request_count: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, input_tokens: int, output_tokens: int, requests: int = 1) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.ai_request_count += requests


@dataclass
class AnalysisResult:
    category: Category = Category.UNKNOWN
    recommendation: Recommendation = Recommendation.KEEP
    reasoning: str = ""
    confidence: Confidence = Confidence.LOW
    priority: Level | None = None
    space_impact: Level | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    follow_up: bool = False  # produced by the enhanced pass
    local: bool = False


@dataclass
class Candidate:
    gmail_id: str
    subject: str
    sender_email: str
    sender_name: str
    date: datetime
    size: int
    category: Category
    recommendation: Recommendation
    reasoning: str
    confidence: Confidence
    priority: Level | None = None
    space_impact: Level | None = None
    follow_up: bool = False


@dataclass
class SenderStat:
    sender_email: str
    sender_name: str
    count: int = 0
    total_size: int = 0
    category: Category | None = None
    percentage: float | None = None
    avg_email_size: int | None = None
    latest_date: str | None = None


@dataclass
class DomainStat:
    domain: str
    unique_senders: int
    total_count: int
    total_size: int
    percentage: float = 0.0
    avg_email_size: int = 0
    senders: list[SenderStat] = field(default_factory=list)  # by count, descending


@dataclass
class CleanupReport:
    total_emails: int
    total_size: int
    potential_savings: int
    deletion_candidates: list[Candidate] = field(default_factory=list)
    keep_candidates: list[Candidate] = field(default_factory=list)
    senders: list[SenderStat] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    estimated_cost: float = 0.0
    analysis_type: AnalysisType = AnalysisType.CLEANUP
    id: str | None = None


@dataclass
class SenderFrequencyReport:
    """Senders grouped under their domains, plus every kept sender as one list by count."""

    total_emails: int
    total_size: int
    senders: list[SenderStat] = field(default_factory=list)
    domains: list[DomainStat] = field(default_factory=list)
    analysis_type: AnalysisType = AnalysisType.SENDER_FREQUENCY
    id: str | None = None

    @property
    def summary(self) -> dict:
        return {
            "total_emails": self.total_emails,
            "total_size": self.total_size,
            "unique_senders": len(self.senders),
            "unique_domains": len(self.domains),
            "top_senders": [
                {"email": s.sender_email, "name": s.sender_name, "count": s.count,
                 "percentage": s.percentage}
                for s in self.senders[:10]
            ],
            "top_domains": [
                {"domain": d.domain, "count": d.total_count, "percentage": d.percentage,
                 "senders": [{"email": s.sender_email, "count": s.count} for s in d.senders[:5]]}
                for d in self.domains[:10]
            ],
        }
