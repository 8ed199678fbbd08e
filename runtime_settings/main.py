"""
Runtime settings service.

Aligns the persisted runtime settings with the settings declared by the
server's modules, then serves them until stopped.
"""

import asyncio
import signal
from dataclasses import asdict
from functools import partial

from runtime_settings.cache.cache import Cache
from runtime_settings.cache.client import RedisClient
from runtime_settings.config.settings import Settings
from runtime_settings.database.postgres import PostgresClient
from runtime_settings.handlers.server_config import ServerConfigResolver
from runtime_settings.logger.logger import Logger, get_logger, init_logger
from runtime_settings.logger.postgres_writer import PostgresWriter
from runtime_settings.logger.types import Category, category, param
from runtime_settings.registry.modules import default_declarations
from runtime_settings.registry.schema import SchemaRegistry
from runtime_settings.repository.config_repository import RuntimeSettingRepository
from runtime_settings.runtime.bootstrap import BootstrapReconciler
from runtime_settings.runtime.service import RuntimeConfig


async def bootstrap_runtime(
    settings: Settings,
    repository: RuntimeSettingRepository,
    cache: Cache,
    logger: Logger,
) -> RuntimeConfig:
    """
    Build the registry, reconcile the database with it and return the service.

    Reconciliation problems never abort startup: reads create any missing
    record from its default.
    """
    registry = SchemaRegistry.collect(default_declarations())
    logger.info(
        "Runtime settings declared",
        category(Category.REGISTRY),
        param("count", len(registry)),
    )

    reconciler = BootstrapReconciler(
        registry,
        repository,
        cache,
        lock_key=settings.runtime.lock_key,
        lock_ttl=settings.runtime.lock_ttl_seconds,
    )
    result = await reconciler.run()
    logger.info(
        "Runtime settings reconciliation finished",
        category(Category.BOOTSTRAP),
        param("applied", result.applied),
        param("skipped", result.skipped),
        param("error", result.error),
    )

    return RuntimeConfig(
        registry,
        repository,
        cache,
        cache_prefix=settings.runtime.cache_prefix,
        cache_ttl=settings.runtime.cache_ttl_seconds,
    )


async def shutdown(
    redis_client: RedisClient,
    postgres_client: PostgresClient,
    log_writer: PostgresWriter,
) -> None:
    """Graceful shutdown."""
    logger = get_logger()
    logger.info("Shutting down runtime settings service...")

    await redis_client.close()
    await postgres_client.close()

    # Последним: flush оставшихся логов
    logger.info("Shutdown complete")
    await log_writer.close()


async def main() -> None:
    """Main entry point."""
    settings = Settings()

    log_writer = PostgresWriter(
        dsn=settings.postgres.dsn,
        batch_size=100,
        flush_interval=5.0,
    )
    await log_writer.connect()

    init_logger(
        service_name=settings.service_name,
        environment=settings.environment,
        writer=log_writer,
        level=settings.log_level,
    )
    logger = get_logger()

    logger.info(
        "Starting runtime settings service",
        param("environment", settings.environment),
        param("service_name", settings.service_name),
        param("version", settings.service_version),
    )

    postgres_client = PostgresClient(settings.postgres)
    redis_client = RedisClient(settings.redis)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        logger.info("Received signal", param("signal", sig))
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, partial(signal_handler, sig))

    try:
        await postgres_client.connect()
        if not await asyncio.to_thread(postgres_client.ping):
            logger.fatal("PostgreSQL is not answering")
        await redis_client.connect()

        repository = RuntimeSettingRepository(postgres_client)
        if not await asyncio.to_thread(repository.ensure_table_exists):
            logger.fatal("Runtime settings table is unavailable")

        runtime = await bootstrap_runtime(settings, repository, Cache(redis_client), logger)

        resolver = ServerConfigResolver(settings, runtime)
        limits = await resolver.credentials_requirement()
        logger.info(
            "Runtime settings service ready",
            param("server_config", asdict(resolver.server_config())),
            param("password_min", limits.min_length),
            param("password_max", limits.max_length),
        )

        await shutdown_event.wait()

    except Exception as e:
        logger.error("Fatal error in runtime settings service", e)
    finally:
        await shutdown(redis_client, postgres_client, log_writer)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
