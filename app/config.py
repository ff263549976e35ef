import os
from dataclasses import dataclass
from pathlib import Path
from typing import List

def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}

def _env_csv(name: str, default: str = "*") -> List[str]:
    raw = os.getenv(name, default)
    return [x.strip() for x in raw.split(",") if x.strip()]

@dataclass(frozen=True)
class Config:
    # OpenAI
    openai_api_key: str
    openai_image_model: str
    openai_text_model: str
    image_size: str  # valid: 1024x1024, 1024x1536, 1536x1024, auto
    # API / CORS
    allowed_origins: List[str]
    # Output handling
    base_output_dir: Path
    # Logging
    log_level: str
    log_format: str                         # "text" | "json" (Cloud Logging)
    gcs_bucket: str
    signed_url_ttl: int
    public_base_url: str

    # Cloud Tasks / GCP
    gcp_project: str
    gcp_location: str
    tasks_queue: str
    task_backend: str                       # "cloud_tasks" | "local"

    # Step pacing & retry policy
    step_delay_ms: int
    base_backoff_ms: int
    max_validation_retries: int             # content-validation (422-class) retries per target
    max_transient_retries: int              # rate-limit / 5xx retries per target
    max_qa_fixes: int                       # 0 disables the QA minimal-edit pass
    qa_check_enabled: bool
    beat_attempts: int
    stalled_after_seconds: int
    job_lock_timeout: float
    sweep_jobs_on_startup: bool

    # Credits
    generation_credit_cost: int
    edit_credit_cost: int
    max_edits_per_page: int                 # 0 = unlimited
    ledger_base_url: str
    ledger_api_key: str
    ledger_timeout: float

    # Notification
    notify_url: str

def load_config() -> Config:
    return Config(
        openai_api_key = os.getenv("OPENAI_API_KEY", ""),
        openai_image_model = os.getenv("OPENAI_IMAGE_MODEL", "gpt-image-1"),
        openai_text_model = os.getenv("OPENAI_TEXT_MODEL", "gpt-4o-mini"),
        image_size = os.getenv("IMAGE_SIZE", "1024x1536"),
        allowed_origins = _env_csv("ALLOWED_ORIGINS", "*"),
        base_output_dir = Path(os.getenv("OUTPUT_DIR", str(Path(__file__).resolve().parent / "output"))),
        log_level = os.getenv("LOG_LEVEL", "DEBUG"),
        log_format = os.getenv("LOG_FORMAT", "text").strip().lower(),
        gcs_bucket = os.getenv("GCS_BUCKET", "ai-comic-books-assets"),
        signed_url_ttl = int(os.getenv("GCS_SIGNED_URL_TTL", "3600")),
        public_base_url = os.getenv("BASE_URL", "http://localhost:8080"),
        gcp_location = os.getenv("REGION", "us-central1"),
        gcp_project = os.getenv("PROJECT_ID", "ai-comic-books"),
        tasks_queue = os.getenv("TASKS_QUEUE", "comic-step-queue"),
        task_backend = os.getenv("TASK_BACKEND", "cloud_tasks").strip().lower(),
        step_delay_ms = int(os.getenv("STEP_DELAY_MS", "300")),
        base_backoff_ms = int(os.getenv("BASE_BACKOFF_MS", "1000")),
        max_validation_retries = int(os.getenv("MAX_VALIDATION_RETRIES", "5")),
        max_transient_retries = int(os.getenv("MAX_TRANSIENT_RETRIES", "5")),
        max_qa_fixes = int(os.getenv("MAX_QA_FIXES", "0")),
        qa_check_enabled = _env_bool("QA_CHECK_ENABLED", False),
        beat_attempts = int(os.getenv("BEAT_ATTEMPTS", "3")),
        stalled_after_seconds = int(os.getenv("STALLED_AFTER_SECONDS", "300")),
        job_lock_timeout = float(os.getenv("JOB_LOCK_TIMEOUT", "5")),
        sweep_jobs_on_startup = _env_bool("SWEEP_JOBS_ON_STARTUP", False),
        generation_credit_cost = int(os.getenv("GENERATION_CREDIT_COST", "100")),
        edit_credit_cost = int(os.getenv("EDIT_CREDIT_COST", "10")),
        max_edits_per_page = int(os.getenv("MAX_EDITS_PER_PAGE", "0")),
        ledger_base_url = os.getenv("LEDGER_BASE_URL", "http://localhost:8090/api/v1/credits"),
        ledger_api_key = os.getenv("LEDGER_API_KEY", ""),
        ledger_timeout = float(os.getenv("LEDGER_TIMEOUT", "15")),
        notify_url = os.getenv("NOTIFY_URL", ""),
    )

# Load once and ensure output directory exists
config = load_config()
config.base_output_dir.mkdir(parents=True, exist_ok=True)
