"""Runtime settings for cloudtunnel."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_config_dir() -> Path:
    """Directory cloudflared keeps its certificate and credentials in."""
    return Path.home() / ".cloudflared"


class CloudTunnelSettings(BaseSettings):
    """Paths and tunables, overridable through ``CLOUDTUNNEL_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDTUNNEL_",
        extra="ignore",
    )

    config_dir: Path = Field(
        default_factory=default_config_dir,
        description="Directory holding the registry, cert and daemon configs",
    )
    config_file_name: str = Field(
        default="cloudtunnel-config.json", description="Registry file name"
    )
    cert_file_name: str = Field(
        default="cert.pem", description="Certificate written by the daemon login"
    )
    log_file_name: str = Field(default="cloudtunnel.log", description="Log file name")
    binary: str = Field(default="cloudflared", description="Daemon executable")
    health_check_timeout: float = Field(
        default=1.0, gt=0, le=30.0, description="TCP probe timeout in seconds"
    )
    log_level: str = Field(default="INFO", description="Log file level")

    @field_validator("config_dir")
    @classmethod
    def expand_config_dir(cls, v: Path) -> Path:
        """Expand ``~`` so derived paths are usable as-is."""
        return v.expanduser()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def config_file(self) -> Path:
        return self.config_dir / self.config_file_name

    @property
    def cert_file(self) -> Path:
        return self.config_dir / self.cert_file_name

    @property
    def log_file(self) -> Path:
        return self.config_dir / self.log_file_name

    def credentials_file(self, tunnel_id: str) -> Path:
        """Credentials JSON the daemon writes when a tunnel is created."""
        return self.config_dir / f"{tunnel_id}.json"

    def daemon_config_file(self, tunnel_id: str) -> Path:
        """Generated ingress config for one tunnel."""
        return self.config_dir / f"{tunnel_id}.yml"

    def daemon_log_file(self, tunnel_id: str) -> Path:
        """Output of a detached daemon process."""
        return self.config_dir / f"{tunnel_id}.log"
