import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from opsdesk.access.authorizer import TransitionAuthorizer
from opsdesk.access.permissions import CapabilityResolver, PermissionRepository, PermissionResolver
from opsdesk.api.routes import ping, tickets
from opsdesk.core.config import Settings, get_settings
from opsdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from opsdesk.metrics import metrics_registry
from opsdesk.notifications.dispatcher import NotificationDispatcher
from opsdesk.notifications.notifiers import InAppNotifier, LoggingNotifier, Notifier
from opsdesk.notifications.repository import NotificationRepository
from opsdesk.services.postgres import PostgresPool
from opsdesk.tickets.errors import DependencyError
from opsdesk.tickets.repository import TicketRepository
from opsdesk.tickets.service import TicketService

logger = logging.getLogger(__name__)


async def build_ticket_service(settings: Settings, postgres: PostgresPool) -> TicketService:
    """Wire the ticket service and its collaborators against a live pool."""

    pool = await postgres.get_pool()
    ticket_repository = TicketRepository(pool, ticket_number_prefix=settings.ticket_number_prefix)
    permissions = PermissionResolver(PermissionRepository(pool))
    capabilities = CapabilityResolver(
        permissions,
        admin_permission=settings.admin_permission,
        elevated_permission=settings.elevated_permission,
    )

    notifier: Notifier
    if settings.notifications_enabled:
        notification_repository = NotificationRepository(pool)
        await notification_repository.ensure_schema()
        notifier = InAppNotifier(notification_repository, roles=settings.notification_roles)
    else:
        notifier = LoggingNotifier()

    service = TicketService(
        ticket_repository,
        TransitionAuthorizer(capabilities, registry=metrics_registry),
        NotificationDispatcher(notifier, registry=metrics_registry),
        permissions=permissions,
        delete_permission=settings.delete_permission,
        registry=metrics_registry,
    )
    await service.ensure_schema()
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider

    postgres = PostgresPool(
        dsn=settings.postgres_dsn,
        min_size=settings.postgres_min_pool_size,
        max_size=settings.postgres_max_pool_size,
    )
    app.state.postgres = postgres
    try:
        app.state.ticket_service = await build_ticket_service(settings, postgres)
    except DependencyError:
        # Routes answer 503 until the database is reachable on the next start.
        logger.exception("Ticket service initialisation failed")
        app.state.ticket_service = None
    try:
        yield
    finally:
        service = getattr(app.state, "ticket_service", None)
        if service is not None:
            await service.dispatcher.drain()
        await postgres.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    return app


app = create_app()
