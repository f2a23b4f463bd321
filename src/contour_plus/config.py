"""Configuration management for contour-plus.

Settings are loaded from (highest priority wins):
1. Environment variables  (``CONTOUR_PLUS_*``)
2. Defaults
"""

from __future__ import annotations

from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

from contour_plus.models import IssuerKind, NamespacedName, ReconcilerOptions

SUPPORTED_CRDS = ("DNSEndpoint", "Certificate")


class ControllerSettings(BaseSettings):
    """All configurable knobs for the controller.

    Values can be set via environment variables with the ``CONTOUR_PLUS_``
    prefix, e.g. ``CONTOUR_PLUS_SERVICE_NAME``, ``CONTOUR_PLUS_CRDS``, etc.
    """

    # Target service ------------------------------------------------------------
    service_name: str = Field(
        default="projectcontour/envoy",
        description="NamespacedName of the load-balancer Service whose addresses are published.",
    )

    # Derived resources ---------------------------------------------------------
    name_prefix: str = Field(
        default="",
        description="Prefix added to the names of generated DNSEndpoint and Certificate objects.",
    )
    crds: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(SUPPORTED_CRDS),
        description="Kinds to generate. Comma-separated string also accepted via env var.",
    )
    default_issuer_name: str = Field(
        default="",
        description="Issuer used when a virtual host names none. Empty means no certificate unless annotated.",
    )
    default_issuer_kind: IssuerKind = Field(
        default=IssuerKind.CLUSTER_ISSUER,
        description="Kind of the default issuer: 'Issuer' or 'ClusterIssuer'.",
    )
    ingress_class_name: str = Field(
        default="",
        description="Only handle virtual hosts of this ingress class. Empty handles all.",
    )

    # Runtime -------------------------------------------------------------------
    watch_timeout: int = Field(
        default=300,
        ge=10,
        description="Seconds before a watch stream is closed and reopened.",
    )
    retry_base_delay: float = Field(
        default=0.5,
        gt=0,
        description="Seconds before the first retry of a failed reconcile.",
    )
    retry_max_delay: float = Field(
        default=300.0,
        gt=0,
        description="Upper bound in seconds for the retry backoff.",
    )

    # Logging -------------------------------------------------------------------
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR).",
    )
    log_format: str = Field(
        default="json",
        description="Log format: 'json' (structured) or 'console' (human-readable).",
    )

    # ---- Validators -----------------------------------------------------------

    @field_validator("service_name")
    @classmethod
    def _validate_service_name(cls, v: str) -> str:
        NamespacedName.parse(v)
        return v

    @field_validator("crds", mode="before")
    @classmethod
    def _parse_comma_separated(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [kind.strip() for kind in v.split(",") if kind.strip()]
        return v

    @field_validator("crds")
    @classmethod
    def _validate_crds(cls, v: list[str]) -> list[str]:
        unknown = [kind for kind in v if kind not in SUPPORTED_CRDS]
        if unknown:
            raise ValueError(f"unsupported CRDs {unknown}; choose from {list(SUPPORTED_CRDS)}")
        return v

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, v: str) -> str:
        return v.upper()

    # ---- Derived values -------------------------------------------------------

    @property
    def create_dns_endpoint(self) -> bool:
        return "DNSEndpoint" in self.crds

    @property
    def create_certificate(self) -> bool:
        return "Certificate" in self.crds

    def reconciler_options(self) -> ReconcilerOptions:
        """Return the immutable options shared by both reconcilers."""
        return ReconcilerOptions(
            service_key=NamespacedName.parse(self.service_name),
            prefix=self.name_prefix,
            default_issuer_name=self.default_issuer_name,
            default_issuer_kind=self.default_issuer_kind,
            create_dns_endpoint=self.create_dns_endpoint,
            create_certificate=self.create_certificate,
            ingress_class_name=self.ingress_class_name,
        )

    # ---- Pydantic-settings config ---------------------------------------------

    model_config = {
        "env_prefix": "CONTOUR_PLUS_",
        "case_sensitive": False,
    }


def load_settings() -> ControllerSettings:
    """Load and validate controller settings from the environment.

    Returns
    -------
    ControllerSettings
        Fully-resolved configuration.

    Raises
    ------
    pydantic.ValidationError
        If settings are invalid.
    """
    return ControllerSettings()
