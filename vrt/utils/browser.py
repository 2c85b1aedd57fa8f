"""Browser utilities: resolve device profiles and create Playwright contexts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright

from vrt.models.config import DeviceProfile, FrameworkConfig
from vrt.url_utils import sanitize_profile_name

logger = logging.getLogger(__name__)

_BROWSER_TYPES = ("chromium", "firefox", "webkit")


@dataclass
class ResolvedProfile:
    name: str
    browser_name: str
    context_options: dict = field(default_factory=dict)
    launch_args: list[str] = field(default_factory=list)

    @property
    def viewport(self) -> dict:
        return self.context_options.get("viewport") or {"width": 1280, "height": 720}

    @property
    def viewport_label(self) -> str:
        return f"{self.viewport['width']}x{self.viewport['height']}"


def _find_descriptor(devices: dict, name: str) -> tuple[str, dict] | None:
    if name in devices:
        return name, devices[name]
    wanted = sanitize_profile_name(name)
    for device_name, descriptor in devices.items():
        if sanitize_profile_name(device_name) == wanted:
            return device_name, descriptor
    return None


def resolve_profile(playwright: Playwright, config: FrameworkConfig, name: str) -> ResolvedProfile:
    """Build launch and context options for a configured or Playwright-known profile."""
    profile = config.get_profile(name)
    if profile is None:
        found = _find_descriptor(playwright.devices, name)
        if found is None:
            raise ValueError(f"Unknown device profile: {name}")
        profile = DeviceProfile(name=name, device=found[0])

    options: dict = {}
    browser_name = "chromium"
    if profile.device:
        found = _find_descriptor(playwright.devices, profile.device)
        if found is None:
            raise ValueError(f"Unknown Playwright device '{profile.device}' for profile {name}")
        descriptor = dict(found[1])
        browser_name = descriptor.pop("default_browser_type", "chromium")
        options.update(descriptor)

    if profile.browser:
        browser_name = profile.browser
    if browser_name not in _BROWSER_TYPES:
        raise ValueError(f"Unsupported browser '{browser_name}' for profile {name}")

    if profile.viewport:
        options["viewport"] = profile.viewport.model_dump()
    if profile.device_scale_factor is not None:
        options["device_scale_factor"] = profile.device_scale_factor
    if profile.is_mobile is not None:
        options["is_mobile"] = profile.is_mobile
    if profile.has_touch is not None:
        options["has_touch"] = profile.has_touch

    # Firefox does not support mobile emulation
    if browser_name == "firefox":
        options.pop("is_mobile", None)

    return ResolvedProfile(
        name=profile.name,
        browser_name=browser_name,
        context_options=options,
        launch_args=list(profile.launch_args),
    )


async def launch_browser(playwright: Playwright, profile: ResolvedProfile, headless: bool = True) -> Browser:
    logger.debug("Launching %s for profile %s", profile.browser_name, profile.name)
    browser_type = getattr(playwright, profile.browser_name)
    return await browser_type.launch(headless=headless, args=profile.launch_args)


async def create_context(
    browser: Browser,
    profile: ResolvedProfile,
    storage_state: Optional[dict | str | Path] = None,
    http_credentials: Optional[dict] = None,
) -> BrowserContext:
    """Create a browser context for a profile.

    Args:
        storage_state: Optional Playwright storage state (cookies + localStorage)
            produced by an authentication provider. Accepts a dict or a path.
        http_credentials: Optional ``{"username", "password"}`` for HTTP basic auth.
    """
    context_kwargs: dict = dict(profile.context_options)
    if storage_state is not None:
        context_kwargs["storage_state"] = str(storage_state) if isinstance(storage_state, Path) else storage_state
    if http_credentials:
        context_kwargs["http_credentials"] = http_credentials
    return await browser.new_context(**context_kwargs)


def list_profiles(playwright: Playwright, config: FrameworkConfig) -> list[ResolvedProfile]:
    """Configured profiles first, then every Playwright device descriptor."""
    profiles = [resolve_profile(playwright, config, p.name) for p in config.profiles]
    seen = {p.name for p in profiles}
    for device_name in playwright.devices:
        name = sanitize_profile_name(device_name)
        if name not in seen:
            profiles.append(resolve_profile(playwright, config, name))
            seen.add(name)
    return profiles
