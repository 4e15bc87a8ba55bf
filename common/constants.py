"""Project-wide constants (e.g., CHUNK_SIZE, concurrency, id prefix)."""

DEFAULT_CHUNK_SIZE_BYTES: int = 20 * 1024 * 1024  # 20 MiB default chunk size
DEFAULT_CONCURRENCY: int = 3
DEFAULT_CHUNK_RETRY: int = 2
DEFAULT_TIMEOUT_SECONDS: float = 0  # 0 disables the timeout

DEFAULT_HTTP_METHOD: str = "POST"
DEFAULT_FILE_FIELD: str = "file"
FILE_ID_PREFIX: str = "WU_FILE_"

ENV_PREFIX: str = "UPLOADER_"
