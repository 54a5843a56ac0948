"""Configuration models using Pydantic for validation."""
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
import os


# Dark palette used to color plot lines, cycled per line.
DARK_COLORS = [
    "#1b9e77", "#d95f02", "#7570b3", "#e7298a",
    "#66a61e", "#e6ab02", "#a6761d", "#666666",
]


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"


class ServerConfig(BaseModel):
    """HTTP front-end configuration."""
    bind_address: str = "0.0.0.0"
    port: int = 8080


class BackendConfig(BaseModel):
    """Telemetry backend configuration."""
    kind: Literal["prometheus", "static"] = "prometheus"
    url: str = "http://localhost:9090"
    host_label: str = "instance"
    pool_size: int = Field(default=4, ge=1)
    timeout_s: float = Field(default=10.0, gt=0)
    acquire_timeout_s: Optional[float] = None
    step_s: int = Field(default=60, ge=1)
    static_path: Optional[str] = None


class RenderConfig(BaseModel):
    """Image rendering configuration."""
    width: int = 500
    height: int = 200
    dpi: int = 100
    format: Literal["svg", "png"] = "svg"
    palette: List[str] = Field(default_factory=lambda: list(DARK_COLORS))

    @field_validator('palette')
    @classmethod
    def validate_palette(cls, v):
        if not v:
            raise ValueError("Palette must contain at least one color")
        return v


class EngineConfig(BaseModel):
    """Alignment engine settings."""
    verify_timestamps: bool = True


class SelfMetricsConfig(BaseModel):
    """Self-monitoring metrics configuration."""
    enabled: bool = True
    prefix: str = "tsgraph_"


class Config(BaseModel):
    """Root configuration model."""
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    server: ServerConfig = Field(default_factory=ServerConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    self_metrics: SelfMetricsConfig = Field(default_factory=SelfMetricsConfig)

    model_config = {"populate_by_name": True}

    @model_validator(mode='after')
    def validate_static_backend(self):
        """A static backend needs a data file."""
        if self.backend.kind == "static" and not self.backend.static_path:
            raise ValueError("Static backend requires 'static_path'")
        return self


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_url := os.getenv('TSGRAPH_BACKEND_URL'):
        raw_config.setdefault('backend', {})['url'] = env_url

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    # Relative data files are resolved against the config file location.
    static_path = raw_config.get('backend', {}).get('static_path')
    if static_path and not os.path.isabs(static_path):
        raw_config['backend']['static_path'] = os.path.join(
            os.path.dirname(os.path.abspath(config_path)), static_path
        )

    try:
        config = Config(**raw_config)
        return config
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
