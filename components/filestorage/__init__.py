from __future__ import annotations
from typing import Optional, Tuple

from .contracts import *
from .errors import *
from .files import BytesFile, FileLike, LazyContent, LazyFile
from .ports import FileStoragePort
from .adapters.local_fs import LocalFSFileStorage
from .adapters.s3 import S3FileStorage
from .adapters.signing import SigV4Auth, resolve_credentials

from .config import FileStorageSettings
from .service import FileStorageService

def make_storage_from_env(cfg: Optional[FileStorageSettings] = None) -> Tuple[FileStoragePort, str]:
    cfg = cfg or FileStorageSettings()
    if cfg.FILE_STORAGE_ADAPTER.lower() == "localfs":
        return LocalFSFileStorage(cfg.FILE_STORAGE_LOCAL_ROOT), "localfs"
    elif cfg.FILE_STORAGE_ADAPTER.lower() == "s3":
        if not cfg.S3_BUCKET:
            raise RuntimeError("S3_BUCKET is required for S3 adapter")
        credentials = resolve_credentials(cfg.AWS_ACCESS_KEY_ID, cfg.AWS_SECRET_ACCESS_KEY, cfg.AWS_SESSION_TOKEN)
        return S3FileStorage(
            cfg.S3_BUCKET,
            region=cfg.AWS_REGION,
            endpoint=cfg.S3_ENDPOINT_URL,
            force_path_style=cfg.S3_FORCE_PATH_STYLE,
            eager=cfg.S3_EAGER,
            part_size=cfg.S3_PART_SIZE,
            credentials=credentials,
            timeout=cfg.S3_TIMEOUT_SECONDS,
        ), "s3"
    else:
        raise RuntimeError(f"Unknown FILE_STORAGE_ADAPTER: {cfg.FILE_STORAGE_ADAPTER}")
