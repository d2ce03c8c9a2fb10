"""
Dissector configuration management
"""
from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings

from rbus_dissector.engine.protocol import MAX_DEPTH_LIMIT


class Settings(BaseSettings):
    """RBus dissector settings"""

    # Transport binding (informational, the engine never opens sockets)
    tcp_port: int = Field(default=10002, ge=1, le=65535)
    uds_path: str = "/tmp/rtrouted"

    # Decoder resource bounds
    msgpack_depth_limit: int = Field(default=16, ge=1, le=MAX_DEPTH_LIMIT)
    msgpack_object_limit: int = Field(default=20000, ge=1)

    # Auto-detect RBus on streams without a port hint
    heuristic_enabled: bool = True

    # Tools API
    api_host: str = "127.0.0.1"
    api_port: int = 8010

    # Paths
    project_root: Path = Path(__file__).parent.parent
    log_dir: Path = project_root / "logs"
    log_level: str = "INFO"

    class Config:
        env_prefix = "RBUS_"
        env_file = ".env"


settings = Settings()
