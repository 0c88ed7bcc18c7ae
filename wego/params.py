"""Parameters and kinds shared by the application commands."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class _StrEnum(str, enum.Enum):
    def __str__(self) -> str:
        return self.value


class DeploymentType(_StrEnum):
    """How an application's manifests are deployed."""

    KUSTOMIZE = "kustomize"
    HELM = "helm"


class SourceType(_StrEnum):
    """Where an application's manifests come from."""

    GIT = "git"
    HELM = "helm"


class ConfigType(_StrEnum):
    """Where the automation manifests of an application are kept."""

    USER_REPO = ""
    NONE = "NONE"


@dataclass
class AddParams:
    """Everything that describes an application to add or inspect."""

    dir: str = ""
    name: str = ""
    owner: str = ""
    url: str = ""
    path: str = "./"
    branch: str = "main"
    deployment_type: str = DeploymentType.KUSTOMIZE.value
    chart: str = ""
    source_type: str = ""
    app_config_url: str = ""
    namespace: str = "wego-system"
    dry_run: bool = False

    @property
    def config_type(self) -> ConfigType | None:
        """The configuration kind, or None for an external configuration repository."""
        try:
            return ConfigType(self.app_config_url.upper())
        except ValueError:
            return None