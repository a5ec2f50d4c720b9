"""Configuration schema for streambuild using Pydantic."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Union

import docker
import yaml
from docker.tls import TLSConfig
from pydantic import BaseModel, Field


class TLSSettings(BaseModel):
    """TLS material for a remote engine daemon."""

    ca_cert: Optional[Path] = None
    """CA certificate used to verify the daemon."""

    client_cert: Optional[Path] = None
    """Client certificate presented to the daemon."""

    client_key: Optional[Path] = None
    """Key for client_cert."""

    verify: bool = True
    """Whether to verify the daemon's certificate."""

    def to_tls_config(self) -> TLSConfig:
        client_cert = None
        if self.client_cert and self.client_key:
            client_cert = (str(self.client_cert), str(self.client_key))
        return TLSConfig(
            client_cert=client_cert,
            ca_cert=str(self.ca_cert) if self.ca_cert else None,
            verify=self.verify,
        )


class EngineConfig(BaseModel):
    """How to reach the engine daemon."""

    base_url: Optional[str] = None
    """Daemon address, e.g. 'unix:///var/run/docker.sock' or 'tcp://host:2376'. Defaults to DOCKER_HOST."""

    version: Optional[str] = None
    """Engine API version. Negotiated with the daemon when unset."""

    timeout: Optional[int] = None
    """Request timeout in seconds."""

    tls: Optional[TLSSettings] = None
    """TLS settings for remote daemons."""

    def create_api_client(self) -> docker.APIClient:
        if self.base_url is None:
            kwargs: Dict[str, Any] = docker.utils.kwargs_from_env()
        else:
            kwargs = {"base_url": self.base_url}

        if self.tls is not None:
            kwargs["tls"] = self.tls.to_tls_config()
        if self.version:
            kwargs["version"] = self.version
        if self.timeout:
            kwargs["timeout"] = self.timeout
        return docker.APIClient(**kwargs)


class BuildSettings(BaseModel):
    """Build parameters handed to the engine."""

    dockerfile: Optional[str] = None
    """Path of the Dockerfile inside the build context."""

    tag: Optional[str] = None
    """Tag applied to the built image."""

    target: Optional[str] = None
    """Build stage to stop at."""

    buildargs: Dict[str, str] = Field(default_factory=dict)
    """Build-time variables (ARG)."""

    labels: Dict[str, str] = Field(default_factory=dict)
    """Labels applied to the built image."""

    nocache: bool = False
    """Do not use the build cache."""

    rm: bool = True
    """Remove intermediate containers after a successful build."""

    pull: bool = False
    """Always attempt to pull newer base images."""

    platform: Optional[str] = None
    """Target platform, e.g. 'linux/arm64'."""

    template_vars: Dict[str, str] = Field(default_factory=dict)
    """Values for %%NAME%% placeholders in a Dockerfile.template. Not sent to the engine."""

    def to_build_options(self) -> Dict[str, Any]:
        """Returns the settings as docker-py build() keyword arguments."""
        options = self.model_dump(exclude={"template_vars"}, exclude_none=True)
        return {key: value for key, value in options.items() if value != {}}


class StreamBuildConfig(BaseModel):
    """Root configuration object for streambuild."""

    engine: EngineConfig = Field(default_factory=EngineConfig)
    build: BuildSettings = Field(default_factory=BuildSettings)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> StreamBuildConfig:
        """Loads and validates a StreamBuildConfig from a YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})
