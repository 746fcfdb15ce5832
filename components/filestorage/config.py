
from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional

class FileStorageSettings(BaseSettings):
    FILE_STORAGE_ADAPTER: str = Field(default="s3")  # "s3" | "localfs"
    # Local FS
    FILE_STORAGE_LOCAL_ROOT: str = Field(default="./var/filedata")
    # S3
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_SESSION_TOKEN: Optional[str] = None
    AWS_REGION: Optional[str] = None
    S3_BUCKET: Optional[str] = None
    S3_ENDPOINT_URL: Optional[str] = None
    S3_FORCE_PATH_STYLE: bool = False
    S3_EAGER: bool = False  # GET on get() instead of HEAD
    S3_PART_SIZE: int = Field(default=8 * 1024 * 1024, ge=5 * 1024 * 1024)
    S3_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    class Config:
        env_file = ".env"
        case_sensitive = False
