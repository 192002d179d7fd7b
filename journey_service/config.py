"""Application configuration."""
import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()


@dataclass
class JourneyConfig:
    definitions_dir: str = os.getenv("JOURNEYS_DIR", "data/journeys")


@dataclass
class SchedulerConfig:
    sweep_interval_seconds: float = float(os.getenv("SWEEP_INTERVAL_SECONDS", "3600"))


@dataclass
class EventQueueConfig:
    max_size: int = int(os.getenv("EVENT_QUEUE_MAX_SIZE", "10000"))
    poll_timeout: float = float(os.getenv("EVENT_QUEUE_POLL_TIMEOUT", "1.0"))


@dataclass
class NotificationConfig:
    enabled: bool = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true"


@dataclass
class APIConfig:
    host: str = os.getenv("API_HOST", "0.0.0.0")
    port: int = int(os.getenv("API_PORT", "8000"))


@dataclass
class AppConfig:
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "console")
    journeys: JourneyConfig = field(default_factory=JourneyConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    events: EventQueueConfig = field(default_factory=EventQueueConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    api: APIConfig = field(default_factory=APIConfig)


config = AppConfig()
