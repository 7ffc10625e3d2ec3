"""The engine's long-lived collaborators, built once per process."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from functools import partial
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from job_tracker.config import AppConfig
from job_tracker.credentials.store import CredentialStore, SecretBox
from job_tracker.email.classifier import Classifier, RuleBasedClassifier
from job_tracker.email.client import IMAPMailboxClient, open_mailbox
from job_tracker.enrichment.fetcher import PostingFetcher
from job_tracker.enrichment.worker import EnrichmentWorker, PostingSource
from job_tracker.enrichment.writer import RecordEnrichmentWriter
from job_tracker.ingestion.importer import AccountLocks
from job_tracker.jobs.runner import JobRunner
from job_tracker.models import EmailCredential

MailboxFactory = Callable[[EmailCredential, str], IMAPMailboxClient]


@dataclass
class EngineServices:
    """Everything a job body or a route needs, passed around explicitly."""

    config: AppConfig
    session_factory: sessionmaker[Session]
    credentials: CredentialStore
    classifier: Classifier
    account_locks: AccountLocks
    runner: JobRunner
    worker: EnrichmentWorker
    fetcher: PostingSource
    mailbox_factory: MailboxFactory

    @property
    def dedup_window(self) -> timedelta:
        return timedelta(days=self.config.dedup_window_days)

    def shutdown(self) -> None:
        self.runner.shutdown()
        self.worker.stop()
        if isinstance(self.fetcher, PostingFetcher):
            self.fetcher.close()


def build_services(
    config: AppConfig,
    session_factory: sessionmaker[Session],
    *,
    fetcher: Optional[PostingSource] = None,
    mailbox_factory: Optional[MailboxFactory] = None,
    classifier: Optional[Classifier] = None,
) -> EngineServices:
    """Wire the default collaborators; tests pass stubs for the network-facing ones."""
    settings = config.enrichment_settings()
    fetcher = fetcher or PostingFetcher(settings)
    worker = EnrichmentWorker(settings, fetcher, RecordEnrichmentWriter(session_factory))
    return EngineServices(
        config=config,
        session_factory=session_factory,
        credentials=CredentialStore(SecretBox(config.credential_secret_key.get_secret_value())),
        classifier=classifier or RuleBasedClassifier(),
        account_locks=AccountLocks(),
        runner=JobRunner(
            active_window_sec=config.job_active_window_sec,
            retention_sec=config.job_retention_sec,
        ),
        worker=worker,
        fetcher=fetcher,
        mailbox_factory=mailbox_factory or partial(open_mailbox, timeout=config.imap_timeout_sec),
    )
