from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    openai_api_key: str = ""
    text_model: str = "gpt-4o-mini"
    image_model: str = "gpt-image-1"
    image_size: str = "1024x1536"

    tts_provider: str = "elevenlabs"
    elevenlabs_api_key: str = ""
    elevenlabs_model: str = "eleven_multilingual_v2"
    default_voice_id: str = "21m00Tcm4TlvDq8ikWAM"  # Rachel

    storage_backend: str = "gcs"
    gcs_bucket_name: str = "instashorts-content"
    gcs_project_id: str = ""

    database_path: str = "instashorts.db"
    output_dir: str = "output"

    queue_backend: str = "local"
    redis_url: str = "redis://localhost:6379/0"

    # Per-stage worker policy: concurrency, attempts, base backoff seconds
    script_concurrency: int = 5
    script_attempts: int = 3
    voiceover_concurrency: int = 3
    voiceover_attempts: int = 3
    scenes_concurrency: int = 5
    scenes_attempts: int = 3
    scene_image_concurrency: int = 10
    scene_image_attempts: int = 3
    render_concurrency: int = 2
    render_attempts: int = 1
    retry_backoff_seconds: float = 2.0

    max_words_per_block: int = 10
    render_fps: int = 30
    render_duration_buffer: float = 0.5
    render_timeout: float = 300.0

    # 0 disables the sweep; jobs with a permanently failed scene then stay put
    stuck_job_timeout_hours: float = 0.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
