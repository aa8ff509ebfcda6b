from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash-lite", validation_alias="GEMINI_MODEL")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="meta-llama/llama-3.3-8b-instruct:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Writing Assessment", validation_alias="OPENROUTER_TITLE")

	# Generation: hard client-side bound on a single upstream call
	generation_timeout_seconds: float = Field(default=20.0, validation_alias="GENERATION_TIMEOUT_SECONDS")
	generation_max_attempts: int = Field(default=2, validation_alias="GENERATION_MAX_ATTEMPTS")
	# Rate-limit backoff is this value times the attempt number
	generation_backoff_seconds: float = Field(default=2.0, validation_alias="GENERATION_BACKOFF_SECONDS")
	generation_cache_ttl_seconds: float = Field(default=300.0, validation_alias="GENERATION_CACHE_TTL_SECONDS")

	# Cooldowns per workflow
	writing_cooldown_days: int = Field(default=7, validation_alias="WRITING_COOLDOWN_DAYS")
	presentation_cooldown_hours: int = Field(default=24, validation_alias="PRESENTATION_COOLDOWN_HOURS")

	# Video storage (Cloudinary)
	cloudinary_cloud_name: str | None = Field(default=None, validation_alias="CLOUDINARY_CLOUD_NAME")
	cloudinary_api_key: str | None = Field(default=None, validation_alias="CLOUDINARY_API_KEY")
	cloudinary_api_secret: str | None = Field(default=None, validation_alias="CLOUDINARY_API_SECRET")

	# Document storage (Google Drive v3)
	google_drive_access_token: str | None = Field(default=None, validation_alias="GOOGLE_DRIVE_ACCESS_TOKEN")
	google_drive_folder_id: str = Field(default="root", validation_alias="GOOGLE_DRIVE_FOLDER_ID")

	# Saga step bounds; None leaves the collaborator's own timeout in charge
	upload_timeout_seconds: float | None = Field(default=300.0, validation_alias="UPLOAD_TIMEOUT_SECONDS")
	persist_timeout_seconds: float | None = Field(default=30.0, validation_alias="PERSIST_TIMEOUT_SECONDS")
	max_upload_bytes: int = Field(default=100 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
