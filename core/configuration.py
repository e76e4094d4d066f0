from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Configures the connection to the PostgreSQL database.
    database_hostname: Optional[str] = None
    database_port: Optional[str] = None
    database_password: Optional[str] = None
    database_name: Optional[str] = None
    database_username: Optional[str] = None

    # Full SQLAlchemy URL (e.g. "sqlite:///./conversions.db").
    # If set, it takes precedence over the PostgreSQL fields above.
    database_url: Optional[str] = None

    # Can be set to either "local" or "azure".
    # If set to "local", the "local_filesystem_base_directory" value must be specified.
    # If set to "azure", "azure_blob_storage_"-prefixed fields must be specified.
    storage_backend: str = "local"

    local_filesystem_base_directory: Optional[str] = None

    azure_blob_storage_url: Optional[str] = None
    azure_blob_storage_container_name: Optional[str] = None
    azure_blob_storage_shared_key: Optional[str] = None

    # Can be set to either "simulated" or "zmq".
    # If set to "zmq", PDFs are produced by the worker listening on zmq_host:zmq_port.
    materializer_backend: str = "simulated"

    zmq_host: str = "localhost"
    zmq_port: int = 5555

    # Uploaded image files larger than this are rejected.
    max_upload_size_bytes: int = 10 * 1024 * 1024

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    def get_database_url(self) -> str:
        if self.database_url is not None:
            return self.database_url

        if self.database_hostname is None or self.database_name is None:
            raise RuntimeError(
                "Invalid configuration: either database_url or \
                 the database_hostname/database_name pair must be set"
            )

        return (
            f"postgresql+psycopg2://{self.database_username}:{self.database_password}"
            f"@{self.database_hostname}:{self.database_port}/{self.database_name}"
        )


settings = Settings()
