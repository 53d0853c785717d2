from dependency_injector import containers, providers

from skillswap.config import Settings
from skillswap.providers.queue.sqs import SQSClient
from skillswap.services.credit_service import CreditService
from skillswap.services.notification_service import NotificationDispatcher
from skillswap.services.session_service import SessionService
from skillswap.utils.clock import SystemClock


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)
    clock = providers.Singleton(SystemClock)


class ProviderModule(containers.DeclarativeContainer):
    """Outbound integrations."""

    config = providers.DependenciesContainer()

    sqs_client = providers.Singleton(SQSClient, settings=config.config)
    notification_dispatcher = providers.Singleton(
        NotificationDispatcher, sqs_client=sqs_client, settings=config.config
    )


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies. The request-scoped db session is passed at call time."""

    config = providers.DependenciesContainer()
    integrations = providers.DependenciesContainer()

    credit_service = providers.Factory(
        CreditService, settings=config.config, clock=config.clock
    )
    session_service = providers.Factory(
        SessionService,
        settings=config.config,
        clock=config.clock,
        dispatcher=integrations.notification_dispatcher,
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=["skillswap.deps"],
    )

    config = providers.Container(ConfigModule)
    integrations = providers.Container(ProviderModule, config=config)
    services = providers.Container(
        ServiceModule, config=config, integrations=integrations
    )
