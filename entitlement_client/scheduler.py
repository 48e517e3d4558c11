"""
Authentication state machine for a licensed product.

An unverified product is validated synchronously on the next host event.
A verified product gets a recurring background check that wakes up every
poll interval but only contacts the seller once a day, after the 03:00
boundary of the reference time zone.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from zoneinfo import ZoneInfo

from entitlement_client.config import settings
from entitlement_client.database import init_db
from entitlement_client.models import (
    AuthState,
    DeploymentConfig,
    EntitlementRecord,
    ProviderChoice,
    RequestContext,
    ResolvedProvider,
    ValidationAttempt,
    ValidationOutcome,
    ValidationSuccess,
)
from entitlement_client.notifier import admin_notice, should_warn
from entitlement_client.providers import ProviderCatalog, ProviderRegistry
from entitlement_client.store import EntitlementStore
from entitlement_client.timers import APSchedulerTimers, RecurringTimers
from entitlement_client.transport import HttpTransport
from entitlement_client.validator import Validator

logger = logging.getLogger(__name__)

Listener = Callable[[EntitlementRecord], Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_check_due(last_checked_at: datetime, timezone_name: str, anchor_hour: int) -> datetime:
    """First ``anchor_hour``:00 in ``timezone_name`` strictly after ``last_checked_at``."""
    local = last_checked_at.astimezone(ZoneInfo(timezone_name))
    due = local.replace(hour=anchor_hour, minute=0, second=0, microsecond=0)
    if due <= local:
        due += timedelta(days=1)
    return due.astimezone(timezone.utc)


class AuthScheduler:
    def __init__(
        self,
        product_id: str,
        product_version: str,
        store: EntitlementStore,
        registry: ProviderRegistry,
        validator: Validator,
        timers: RecurringTimers,
        host_platform_version: str = "",
        lightweight_actions: Optional[Iterable[str]] = None,
        poll_interval: Optional[timedelta] = None,
        anchor_hour: Optional[int] = None,
        timezone_name: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.product_id = product_id
        self.product_version = product_version
        self.host_platform_version = host_platform_version
        self._store = store
        self._registry = registry
        self._validator = validator
        self._timers = timers
        self._lightweight_actions = frozenset(
            settings.LIGHTWEIGHT_ACTIONS if lightweight_actions is None else lightweight_actions
        )
        self._poll_interval = poll_interval or timedelta(hours=settings.CHECK_POLL_INTERVAL_HOURS)
        self._anchor_hour = settings.CHECK_ANCHOR_HOUR if anchor_hour is None else anchor_hour
        self._timezone_name = timezone_name or settings.CHECK_TIMEZONE
        self._clock = clock
        self._listeners: Dict[str, List[Listener]] = {}
        # Scheduled checks have no request of their own
        self._last_context = RequestContext()

        registry.add_switch_listener(self._on_provider_switched)

    @property
    def job_name(self) -> str:
        return f"{self.product_id}_validate_install"

    @property
    def success_event(self) -> str:
        return f"entitlement.{self.product_id}.success"

    @property
    def failure_event(self) -> str:
        return f"entitlement.{self.product_id}.failure"

    def subscribe(self, event: str, callback: Listener):
        self._listeners.setdefault(event, []).append(callback)

    def record(self) -> EntitlementRecord:
        return self._store.get(self.product_id) or self._registry.register(self.product_id)

    def on_request(self, context: Optional[RequestContext] = None) -> AuthState:
        """
        React to a host event. Validates immediately while unverified, except
        for lightweight polling requests.
        """
        if context is not None:
            self._last_context = context
        record = self.record()
        if record.verified:
            self.arm()
            return record.state
        if context is not None and context.action in self._lightweight_actions:
            logger.debug(
                "Skipping validation of %s for lightweight action '%s'",
                self.product_id,
                context.action,
            )
            return record.state
        return self.process(context)

    def process(self, context: Optional[RequestContext] = None) -> AuthState:
        """Run one validation attempt and persist its outcome."""
        context = context or self._last_context
        with self._store.lock(self.product_id):
            record = self.record()
            resolved = self._registry.resolve(self.product_id)
            outcome = self._validator.validate(
                self.product_id,
                self.product_version,
                resolved,
                context,
                self.host_platform_version,
            )
            record = self._apply(record, resolved, outcome)
            self._emit(self.success_event if record.verified else self.failure_event, record)

        if record.verified:
            self.arm()
        return record.state

    def _apply(
        self,
        record: EntitlementRecord,
        resolved: ResolvedProvider,
        outcome: ValidationOutcome,
    ) -> EntitlementRecord:
        now = self._clock()
        if isinstance(outcome, ValidationSuccess):
            update = {"verified": True, "error_message": "", "last_checked_at": now}
            if outcome.licensed_item_meta is not None:
                update["licensed_item_meta"] = outcome.licensed_item_meta
            result = "fail_open" if outcome.fail_open else "success"
            error_message = None
            logger.info("Validation of %s succeeded (%s)", self.product_id, result)
        else:
            update = {"verified": False, "error_message": outcome.message, "last_checked_at": now}
            result = "failure"
            error_message = outcome.message
            logger.info("Validation of %s failed: %s", self.product_id, outcome.message)

        record = self._store.save(record.model_copy(update=update))
        self._store.log_attempt(self.product_id, resolved.provider, result, error_message)
        return record

    def _emit(self, event: str, record: EntitlementRecord):
        for callback in self._listeners.get(event, []):
            try:
                callback(record)
            except Exception:
                logger.exception("Listener for %s raised", event)

    def is_due(self, record: EntitlementRecord, now: Optional[datetime] = None) -> bool:
        if record.last_checked_at is None:
            return True
        now = now or self._clock()
        return now >= next_check_due(record.last_checked_at, self._timezone_name, self._anchor_hour)

    def run_scheduled_check(self) -> bool:
        """
        Recurring check entry point. A no-op until the check is due, so it is
        safe to call as often as the host's timer fires. Returns True when a
        validation attempt was made.
        """
        with self._store.lock(self.product_id):
            record = self.record()
            if not self.is_due(record):
                logger.debug("Scheduled check for %s is not due yet", self.product_id)
                return False
            self.process()
        return True

    def _scheduled_tick(self):
        try:
            self.run_scheduled_check()
        except Exception:
            logger.exception("Scheduled check for %s failed", self.product_id)

    def arm(self):
        if self._timers.is_scheduled(self.job_name):
            return
        self._timers.schedule_recurring(self.job_name, self._poll_interval, self._scheduled_tick)
        logger.info("Armed recurring check %s", self.job_name)

    def is_armed(self) -> bool:
        return self._timers.is_scheduled(self.job_name)

    def deactivate(self):
        self._timers.cancel_recurring(self.job_name)
        logger.info("Cancelled recurring check %s", self.job_name)

    def close(self):
        self._validator.close()

    def _on_provider_switched(self, product_id: str):
        if product_id == self.product_id:
            self.process()


class SchedulerHandle:
    """What the host application holds on to after ``initialize``."""

    def __init__(
        self,
        scheduler: AuthScheduler,
        registry: ProviderRegistry,
        store: EntitlementStore,
        display_name: str,
        owned_timers: Optional[APSchedulerTimers] = None,
    ):
        self.scheduler = scheduler
        self.registry = registry
        self.store = store
        self.display_name = display_name
        self._owned_timers = owned_timers

    @property
    def product_id(self) -> str:
        return self.scheduler.product_id

    def record(self) -> EntitlementRecord:
        return self.scheduler.record()

    def state(self) -> AuthState:
        return self.record().state

    def is_entitled(self) -> bool:
        return self.record().verified

    def current_failure_message(self) -> str:
        return self.record().error_message

    def switch_provider(self, name: str) -> None:
        """Raises InvalidProvider if ``name`` is not an allowed seller."""
        self.registry.switch_provider(self.product_id, name)

    def provider_choices(self) -> List[ProviderChoice]:
        return self.registry.choices(self.product_id)

    def on_request(self, context: Optional[RequestContext] = None) -> AuthState:
        return self.scheduler.on_request(context)

    def validate_now(self, context: Optional[RequestContext] = None) -> AuthState:
        return self.scheduler.process(context)

    def on_deactivate(self) -> None:
        self.scheduler.deactivate()

    def is_scheduled(self) -> bool:
        return self.scheduler.is_armed()

    def should_warn(self) -> bool:
        return should_warn(self.record())

    def notice(self) -> Optional[str]:
        return admin_notice(self.record(), self.display_name)

    def recent_attempts(self, limit: int = 20) -> List[ValidationAttempt]:
        return self.store.recent_attempts(self.product_id, limit)

    def subscribe(self, event: str, callback: Listener):
        self.scheduler.subscribe(event, callback)

    def close(self) -> None:
        """Release the HTTP client and any scheduler created by ``initialize``."""
        self.scheduler.close()
        if self._owned_timers is not None:
            self._owned_timers.shutdown()


def initialize(
    product_id: str,
    product_version: str,
    display_name: str,
    sellers: Iterable[str] = ("aivec",),
    default_provider: str = "aivec",
    provider_meta_overrides: Optional[Mapping[str, Any]] = None,
    store: Optional[EntitlementStore] = None,
    timers: Optional[RecurringTimers] = None,
    transport: Optional[HttpTransport] = None,
    deployment: Optional[DeploymentConfig] = None,
    context: Optional[RequestContext] = None,
    host_platform_version: str = "",
    on_success: Optional[Listener] = None,
    on_failure: Optional[Listener] = None,
    **scheduler_options,
) -> SchedulerHandle:
    """
    Register a product and run its first authentication step.

    Raises:
        InvalidConfiguration: the sellers/provider metadata are inconsistent.
    """
    deployment = deployment or DeploymentConfig.from_settings(settings)
    catalog = ProviderCatalog(sellers, default_provider, provider_meta_overrides, deployment)

    if store is None:
        init_db()
        store = EntitlementStore()
    registry = ProviderRegistry(catalog, store, deployment)
    registry.register(product_id)

    owned_timers = None
    if timers is None:
        # A scheduler nobody starts would never fire the recurring check
        owned_timers = timers = APSchedulerTimers()
        owned_timers.start()

    scheduler = AuthScheduler(
        product_id,
        product_version,
        store,
        registry,
        Validator(transport),
        timers,
        host_platform_version=host_platform_version,
        **scheduler_options,
    )
    if on_success is not None:
        scheduler.subscribe(scheduler.success_event, on_success)
    if on_failure is not None:
        scheduler.subscribe(scheduler.failure_event, on_failure)

    handle = SchedulerHandle(scheduler, registry, store, display_name, owned_timers)
    scheduler.on_request(context or RequestContext())
    return handle
