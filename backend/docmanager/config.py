# backend/docmanager/config.py
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./docmanager.db"  # Default if not in .env

    # Storage Paths
    STORAGE_PATH: Path = Path("storage")
    UPLOADS_PATH: Path | None = None  # Will be set based on STORAGE_PATH
    LOGS_PATH: Path | None = None  # Will be set based on STORAGE_PATH

    # OCR engine
    TESSERACT_CMD: str | None = None
    TESSDATA_PATH: Path | None = None
    OCR_LANGUAGE: str = "eng"
    OCR_PAGE_SEG_MODE: int = 1
    OCR_PDF_DPI: int = 300

    # Background OCR workers
    OCR_WORKERS: int = 2
    OCR_QUEUE_SIZE: int = 256
    OCR_JOB_TIMEOUT_SECONDS: float = 600.0

    # Server and logging
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_RELOAD: bool = False
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def model_post_init(self, __context) -> None:
        """Post initialization hook to set derived paths"""
        if isinstance(self.STORAGE_PATH, str):
            self.STORAGE_PATH = Path(self.STORAGE_PATH)

        # Set derived paths if not explicitly provided
        self.UPLOADS_PATH = Path(self.UPLOADS_PATH) if self.UPLOADS_PATH else self.STORAGE_PATH / "uploads"
        self.LOGS_PATH = Path(self.LOGS_PATH) if self.LOGS_PATH else self.STORAGE_PATH / "logs"

        self.create_storage_dirs()

    def create_storage_dirs(self) -> None:
        """Create necessary storage directories if they don't exist"""
        for path in [self.STORAGE_PATH, self.UPLOADS_PATH, self.LOGS_PATH]:
            path.mkdir(parents=True, exist_ok=True)

settings = Settings()
