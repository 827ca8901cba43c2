"""Service configuration read from environment variables."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Config:
    """Settings of the users service."""

    port: str = ""
    grpc_port: str = ""
    task_service_host: str = ""
    task_service_port: str = ""
    kafka_brokers: tuple[str, ...] = field(default_factory=tuple)

    @property
    def task_service_target(self) -> str:
        """Address of the task service as ``host:port``."""
        return f"{self.task_service_host}:{self.task_service_port}"


def _split_list(raw: str) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(raw.split(","))


def load_env(environ: Mapping[str, str] | None = None) -> Config:
    """Build a :class:`Config` from ``environ`` (the process environment by default)."""
    env = os.environ if environ is None else environ
    return Config(
        port=env.get("PORT", ""),
        grpc_port=env.get("GRPC_PORT", ""),
        task_service_host=env.get("TASK_SERVICE_HOST", ""),
        task_service_port=env.get("TASK_SERVICE_PORT", ""),
        kafka_brokers=_split_list(env.get("KAFKA_BROKERS", "")),
    )