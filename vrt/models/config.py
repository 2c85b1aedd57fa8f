"""Configuration models for the visual regression runner."""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, Field, field_validator


def _split_selectors(v):
    """Accept either a comma-separated string or a list of selectors."""
    if v is None:
        return []
    if isinstance(v, str):
        if v.strip().upper() == "NULL":
            return []
        return [s.strip() for s in v.split(",") if s.strip()]
    return [s.strip() for s in v if s and s.strip()]


def _resolve_env(v):
    if isinstance(v, str) and v.startswith("env:"):
        env_var = v[4:]
        resolved = os.environ.get(env_var)
        if resolved is None:
            raise ValueError(f"Environment variable '{env_var}' not set")
        return resolved
    return v


SelectorList = Annotated[list[str], BeforeValidator(_split_selectors)]


class Environment(str, Enum):
    BASELINE = "baseline"
    COMPARISON = "comparison"


class IsolationMode(str, Enum):
    FULL = "FULL"
    EMBED = "EMBED"


class DiffMethod(str, Enum):
    HASH = "HASH"
    PIXEL = "PIXEL"


class AuthMethod(str, Enum):
    NONE = "NONE"
    BASIC = "BASIC"
    OKTA = "OKTA"


class EnvironmentUrls(BaseModel):
    baseline: str = "https://www.google.com"
    comparison: str = "https://www.google.com.au"

    def for_env(self, environment: Environment) -> str:
        return self.baseline if environment == Environment.BASELINE else self.comparison


class EmbedTarget(BaseModel):
    data_block: str = '[data-block="content-main"]'
    hide_elements: SelectorList = Field(default_factory=list)


class EmbedConfig(BaseModel):
    baseline: EmbedTarget = Field(default_factory=EmbedTarget)
    comparison: EmbedTarget = Field(default_factory=EmbedTarget)

    def for_env(self, environment: Environment) -> EmbedTarget:
        return self.baseline if environment == Environment.BASELINE else self.comparison


class HideList(BaseModel):
    elements_to_hide: SelectorList = Field(default_factory=list)


class FullPageConfig(BaseModel):
    # Hidden in both environments
    elements_to_hide: SelectorList = Field(default_factory=list)
    baseline: HideList = Field(default_factory=HideList)
    comparison: HideList = Field(default_factory=HideList)

    def selectors_for(self, environment: Environment) -> list[str]:
        specific = self.baseline if environment == Environment.BASELINE else self.comparison
        return [*self.elements_to_hide, *specific.elements_to_hide]


class PageElementsConfig(BaseModel):
    mode: IsolationMode = IsolationMode.FULL
    embed: EmbedConfig = Field(default_factory=EmbedConfig)
    full: FullPageConfig = Field(default_factory=FullPageConfig)

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        return v.upper() if isinstance(v, str) else v


class Thresholds(BaseModel):
    pixel: int = Field(default=10, ge=0, le=100)  # per-channel difference, 0-100
    hash: int = Field(default=10, ge=0, le=64)
    failure: float = Field(default=0.1, ge=0, le=1)  # early failure rate that aborts a shard
    similarity_high: int = 90
    similarity_medium: int = 80


class AuthenticationConfig(BaseModel):
    baseline: AuthMethod = AuthMethod.NONE
    comparison: AuthMethod = AuthMethod.NONE

    @field_validator("baseline", "comparison", mode="before")
    @classmethod
    def normalize_method(cls, v):
        return v.upper() if isinstance(v, str) else v

    def for_env(self, environment: Environment) -> AuthMethod:
        return self.baseline if environment == Environment.BASELINE else self.comparison


class _Credentials(BaseModel):
    """Credential references. Values of the form ``env:NAME`` are looked up
    in the environment when resolved, so the config file never holds secrets."""

    def resolved(self) -> dict[str, str]:
        return {k: _resolve_env(v) for k, v in self.model_dump().items()}


class BasicCredentials(_Credentials):
    username: str = "env:HTTP_USERNAME"
    password: str = "env:HTTP_PASSWORD"


class OktaCredentials(_Credentials):
    domain: str = "env:OKTA_DOMAIN"
    username: str = "env:OKTA_USERNAME"
    password: str = "env:OKTA_PASSWORD"
    answer: str = "env:OKTA_ANSWER"
    client_id: str = "env:OKTA_CLIENT_ID"
    redirect_uri: str = "env:OKTA_REDIRECT_URI"


class ReportingConfig(BaseModel):
    root_dir: str = "public"


class TestType(BaseModel):
    id: str
    name: str
    description: str = ""


class ViewportConfig(BaseModel):
    width: int = 1920
    height: int = 1080


class DeviceProfile(BaseModel):
    """A named capture profile layered over a Playwright device descriptor."""
    name: str
    device: Optional[str] = None  # Playwright descriptor name, e.g. "Desktop Chrome"
    browser: Optional[str] = None  # chromium, firefox, webkit; defaults to the descriptor's
    viewport: Optional[ViewportConfig] = None
    device_scale_factor: Optional[float] = None
    is_mobile: Optional[bool] = None
    has_touch: Optional[bool] = None
    launch_args: list[str] = Field(default_factory=list)


class ShardingConfig(BaseModel):
    min_per_shard: int = Field(default=25, ge=1)
    max_per_shard: int = Field(default=50, ge=1)
    max_shards: int = Field(default=256, ge=1)


class CaptureConfig(BaseModel):
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    navigation_timeout_ms: int = 120_000
    action_timeout_ms: int = 60_000
    wait_until: str = "networkidle"
    max_content_height: int = 32767
    block_find_attempts: int = 3
    block_find_interval_ms: int = 2000
    block_visible_timeout_ms: int = 10_000
    settle_ms: int = 1000
    shard_deadline_seconds: int = 1800
    max_parallel_profiles: int = 3


def _default_profiles() -> list[DeviceProfile]:
    desktop = ViewportConfig(width=1920, height=1080)
    return [
        DeviceProfile(
            name="chromium-desktop", device="Desktop Chrome", viewport=desktop,
            launch_args=["--disable-gpu", "--no-sandbox", "--disable-dev-shm-usage"],
        ),
        DeviceProfile(name="webkit-desktop", device="Desktop Safari", viewport=desktop),
        DeviceProfile(name="firefox-desktop", device="Desktop Firefox", viewport=desktop),
        DeviceProfile(name="iphone-14-pro-max", device="iPhone 14 Pro Max"),
        DeviceProfile(
            name="samsung-s23-ultra", device="Galaxy S23 Ultra", browser="chromium",
            viewport=ViewportConfig(width=412, height=915),
            device_scale_factor=3.5, is_mobile=True, has_touch=True,
        ),
    ]


class FrameworkConfig(BaseModel):
    # Targets
    urls: EnvironmentUrls = Field(default_factory=EnvironmentUrls)

    # Content isolation
    page_elements: PageElementsConfig = Field(default_factory=PageElementsConfig)

    # Scoring
    thresholds: Thresholds = Field(default_factory=Thresholds)
    image_diff_method: DiffMethod = DiffMethod.HASH

    # Authentication (methods only, credentials come from env)
    authentication: AuthenticationConfig = Field(default_factory=AuthenticationConfig)
    basic_auth: BasicCredentials = Field(default_factory=BasicCredentials)
    okta: OktaCredentials = Field(default_factory=OktaCredentials)
    auth_state_path: str = "playwright/.auth/user.json"

    # Layout of inputs and outputs
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)
    fixtures_dir: str = "fixtures"

    test_types: list[TestType] = Field(
        default_factory=lambda: [
            TestType(id="VRT001", name="visual-diff", description="Visual regression testing"),
            TestType(id="E2E001", name="e2e", description="End to end testing"),
        ]
    )

    profiles: list[DeviceProfile] = Field(default_factory=_default_profiles)
    sharding: ShardingConfig = Field(default_factory=ShardingConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)

    @field_validator("image_diff_method", mode="before")
    @classmethod
    def normalize_method(cls, v):
        return v.upper() if isinstance(v, str) else v

    @property
    def visual_diff_dir(self) -> Path:
        return Path(self.reporting.root_dir) / "visual-diff"

    @property
    def urls_dir(self) -> Path:
        return Path(self.fixtures_dir) / "urls"

    def test_type_id(self, name: str = "visual-diff") -> str:
        for t in self.test_types:
            if t.name == name:
                return t.id
        raise KeyError(f"Unknown test type: {name}")

    def get_profile(self, name: str) -> DeviceProfile | None:
        for p in self.profiles:
            if p.name == name:
                return p
        return None

    @classmethod
    def load(cls, path: str | Path) -> "FrameworkConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)
