import logging
from dataclasses import dataclass
from functools import partial
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from flight_tracker.config import Settings
from flight_tracker.database import create_db_engine, create_session_factory, init_schema
from flight_tracker.jobs.bridge import RemoteAgentBridge
from flight_tracker.jobs.executors import JobExecutor, build_executor
from flight_tracker.jobs.runner import JobRunner
from flight_tracker.jobs.service import JobService
from flight_tracker.scheduler import PriceCheckScheduler, compute_next_run_at
from flight_tracker.scrapers.browser import BrowserLauncher
from flight_tracker.scrapers.google_flights import GoogleFlightsScraper
from flight_tracker.services.context_fetcher import ContextFetcher
from flight_tracker.services.notification import PriceAlertNotifier, build_email_sender
from flight_tracker.services.quote_engine import AmadeusSource, QuoteEngine

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything the app needs, built once at startup and torn down at shutdown."""
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    quote_engine: QuoteEngine
    context_fetcher: ContextFetcher
    notifier: PriceAlertNotifier
    runner: JobRunner
    executor: JobExecutor
    job_service: JobService
    bridge: RemoteAgentBridge
    scheduler: PriceCheckScheduler

    @classmethod
    def build(
        cls,
        settings: Settings,
        engine: Optional[Engine] = None,
        quote_engine: Optional[QuoteEngine] = None,
        context_fetcher: Optional[ContextFetcher] = None,
        notifier: Optional[PriceAlertNotifier] = None,
    ) -> "ServiceContainer":
        engine = engine or create_db_engine(settings.database_url)
        init_schema(engine)
        session_factory = create_session_factory(engine)

        if quote_engine is None:
            scraper = GoogleFlightsScraper(
                launcher=BrowserLauncher(settings.browser_executable_path, headless=settings.scraper_headless),
                screenshots_dir=settings.screenshots_dir,
            )
            amadeus = None
            if settings.amadeus_configured:
                amadeus = AmadeusSource(
                    settings.amadeus_client_id,
                    settings.amadeus_client_secret,
                    base_url=settings.amadeus_base_url,
                )
            quote_engine = QuoteEngine(scraper, amadeus)

        context_fetcher = context_fetcher or ContextFetcher()
        notifier = notifier or PriceAlertNotifier(build_email_sender(settings))

        runner = JobRunner(
            session_factory,
            quote_engine,
            context_fetcher,
            notifier,
            settings,
            next_run_at=partial(compute_next_run_at, settings.cron_schedule, settings.cron_tz),
        )
        executor = build_executor(settings, runner)
        job_service = JobService(executor, settings)
        scheduler = PriceCheckScheduler(settings, session_factory, job_service)

        logger.info(
            f"Services ready: execution={executor.mode}, "
            f"amadeus={'on' if settings.amadeus_configured else 'off'}, "
            f"email={notifier.provider}"
        )
        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            quote_engine=quote_engine,
            context_fetcher=context_fetcher,
            notifier=notifier,
            runner=runner,
            executor=executor,
            job_service=job_service,
            bridge=RemoteAgentBridge(),
            scheduler=scheduler,
        )

    async def start(self):
        with self.session_factory() as db:
            await self.job_service.resubmit_queued_jobs(db)
        if self.settings.scheduler_enabled:
            self.scheduler.start()

    async def stop(self):
        self.scheduler.stop()
        await self.executor.stop()
        self.engine.dispose()
