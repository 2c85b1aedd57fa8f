"""Shard runner: captures one shard's records for each device profile."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from playwright.async_api import Browser, Playwright, async_playwright

from vrt.auth.providers import (
    AuthProvider,
    AuthSession,
    BasicAuth,
    build_auth_provider,
    check_session,
)
from vrt.capture.capturer import CaptureOrchestrator
from vrt.capture.isolation import IsolationStrategy, build_isolation_strategy
from vrt.compare.similarity import SimilarityEngine, build_similarity_engine
from vrt.errors import AuthenticationError, CaptureError, ShardDeadlineError
from vrt.models.config import AuthMethod, Environment, FrameworkConfig
from vrt.models.failure import FailureType
from vrt.results.advisories import PageLimitRecorder
from vrt.results.aggregator import ResultAggregator
from vrt.results.collector import (
    ResultCollector,
    ResultSink,
    canonical_sink,
    combined_sink,
    shard_file_sink,
)
from vrt.results.failures import FailureRecorder
from vrt.sharding.planner import Shard
from vrt.utils.browser import ResolvedProfile, create_context, launch_browser, resolve_profile

logger = logging.getLogger(__name__)


@dataclass
class ProfileRunSummary:
    profile: str
    attempted: int = 0
    completed: int = 0
    failed: int = 0
    results: int = 0
    failure_type: FailureType | None = None
    failure_path: Path | None = None


class ShardRunner:
    """Runs a shard in one environment across device profiles.

    Profiles run concurrently (bounded by ``capture.max_parallel_profiles``);
    within a profile, records are captured one after another on a single
    page. In comparison mode every profile collects its results and flushes
    them once, when it finishes, to ``test-results-<shard>-<profile>.json``
    and optionally to the canonical file.
    """

    def __init__(
        self,
        config: FrameworkConfig,
        environment: Environment,
        shard: Shard,
        profiles: list[str],
        isolation: IsolationStrategy | None = None,
        engine: SimilarityEngine | None = None,
        append_canonical: bool = False,
        headless: bool = True,
        retry_delay: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.environment = environment
        self.shard = shard
        self.profiles = profiles
        self.isolation = isolation or build_isolation_strategy(config)
        self.engine = engine or build_similarity_engine(config)
        self.append_canonical = append_canonical
        self.headless = headless
        self.retry_delay = retry_delay
        self.clock = clock

        self.output_dir = config.visual_diff_dir
        self.aggregator = ResultAggregator(self.output_dir, config.test_type_id())
        self.advisories = PageLimitRecorder(self.output_dir, shard.shard_id)

    @property
    def comparing(self) -> bool:
        return self.environment == Environment.COMPARISON

    async def run(self) -> list[ProfileRunSummary]:
        logger.info("Running shard %s (%d URLs) in %s for %d profile(s)",
                    self.shard.shard_id, len(self.shard.records),
                    self.environment.value, len(self.profiles))

        async with async_playwright() as p:
            resolved = [resolve_profile(p, self.config, name) for name in self.profiles]
            auth = build_auth_provider(self.config, self.environment)

            try:
                session = await self._prepare_auth(p, auth)
                probe_session = await self._baseline_probe_session()
            except Exception as e:
                # Auth browser launch and login errors invalidate every profile
                return [self._fail_profile(profile, e) for profile in resolved]

            semaphore = asyncio.Semaphore(self.config.capture.max_parallel_profiles)

            async def _run_one(profile: ResolvedProfile) -> ProfileRunSummary:
                async with semaphore:
                    return await self.run_profile(p, profile, auth, session, probe_session)

            summaries = list(await asyncio.gather(*(_run_one(profile) for profile in resolved)))

        for s in summaries:
            logger.info("Shard %s [%s]: %d attempted, %d completed, %d failed%s",
                        self.shard.shard_id, s.profile, s.attempted, s.completed, s.failed,
                        f" ({s.failure_type.value})" if s.failure_type else "")
        return summaries

    async def _prepare_auth(self, playwright: Playwright, auth: AuthProvider) -> AuthSession:
        if auth.method == AuthMethod.OKTA:
            browser = await playwright.chromium.launch(headless=self.headless)
            try:
                return await auth.prepare(browser)
            finally:
                await browser.close()
        return await auth.prepare(None)

    async def _baseline_probe_session(self) -> AuthSession:
        # Baseline status probes run during the comparison pass, with baseline credentials
        if not self.comparing:
            return AuthSession()
        provider = build_auth_provider(self.config, Environment.BASELINE)
        if isinstance(provider, BasicAuth):
            return await provider.prepare(None)
        return AuthSession()

    def _sink(self, profile: ResolvedProfile) -> ResultSink:
        sink = shard_file_sink(self.output_dir, self.shard.shard_id, profile.name, self.aggregator.test_type_id)
        if self.append_canonical:
            sink = combined_sink(sink, canonical_sink(self.aggregator))
        return sink

    def _recorder(self, profile: ResolvedProfile) -> FailureRecorder:
        return FailureRecorder(
            self.output_dir, self.shard.shard_id, profile.name,
            self.shard.records, threshold=self.config.thresholds.failure,
        )

    def _fail_profile(self, profile: ResolvedProfile, error: BaseException) -> ProfileRunSummary:
        recorder = self._recorder(profile)
        recorder.systemic(error)
        return ProfileRunSummary(
            profile=profile.name,
            failure_type=recorder.failure_type,
            failure_path=recorder.write(),
        )

    async def _open_probe_page(self, browser: Browser, profile: ResolvedProfile, session: AuthSession):
        context = await create_context(browser, profile, http_credentials=session.http_credentials)
        return await context.new_page()

    async def run_profile(
        self,
        playwright: Playwright,
        profile: ResolvedProfile,
        auth: AuthProvider,
        session: AuthSession,
        probe_session: AuthSession | None = None,
    ) -> ProfileRunSummary:
        """Capture every record of the shard for one profile."""
        records = self.shard.records
        recorder = self._recorder(profile)
        collector = ResultCollector(self._sink(profile)) if self.comparing else None
        capturer = CaptureOrchestrator(
            self.config, profile, self.isolation, self.engine,
            advisories=self.advisories, retry_delay=self.retry_delay,
        )
        summary = ProfileRunSummary(profile=profile.name)
        deadline_seconds = self.config.capture.shard_deadline_seconds
        started = self.clock()

        try:
            browser = await launch_browser(playwright, profile, headless=self.headless)
        except Exception as e:
            logger.error("Could not launch %s for %s: %s", profile.browser_name, profile.name, e)
            recorder.systemic(e)
            if collector is not None:
                await collector.flush()
            summary.failure_type = recorder.failure_type
            summary.failure_path = recorder.write()
            return summary

        try:
            context = await create_context(
                browser, profile,
                storage_state=session.storage_state,
                http_credentials=session.http_credentials,
            )
            if auth.needs_session_check and records:
                await check_session(context, capturer.url_for(records[0], self.environment), auth.method.value)

            page = await context.new_page()
            probe_page = None
            if self.comparing:
                probe_page = await self._open_probe_page(browser, profile, probe_session or AuthSession())

            for index, record in enumerate(records):
                if self.clock() - started > deadline_seconds:
                    recorder.deadline_exceeded(ShardDeadlineError(deadline_seconds))
                    break

                recorder.start(record)
                logger.info("[%s] %d/%d: %s", profile.name, index + 1, len(records), record.id)
                try:
                    if self.comparing:
                        collector.add(await capturer.compare_record(page, record, probe_page))
                    else:
                        await capturer.capture(page, record, Environment.BASELINE)
                    recorder.succeeded(record)
                except CaptureError as e:
                    url = capturer.url_for(record, self.environment)
                    if collector is not None:
                        collector.add(capturer.failed_result(record, e))
                    if recorder.failed_record(record, url, e) == FailureType.FULL:
                        break
        except AuthenticationError as e:
            recorder.systemic(e)
        except Exception as e:
            # Browser or context died mid-shard; what was collected so far still counts
            logger.error("Shard %s [%s] stopped: %s", self.shard.shard_id, profile.name, e)
            recorder.systemic(e)
        finally:
            await browser.close()

        if collector is not None:
            summary.results = await collector.flush()
        summary.attempted = recorder.attempted
        summary.completed = len(recorder.completed)
        summary.failed = len(recorder.failed)
        summary.failure_type = recorder.failure_type
        summary.failure_path = recorder.write()
        return summary
