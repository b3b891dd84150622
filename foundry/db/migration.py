"""Copy document containers from one database to another."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from foundry.db.base import init_db
from foundry.db.enums import MIGRATED_CONTAINERS, ContainerEnum
from foundry.db.repositories.documents import DocumentsRepository, DocumentWriteError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


@dataclass
class ContainerCopyResult:
    container: str
    fetched: int = 0
    upserted: int = 0


@dataclass
class MigrationReport:
    containers: list[ContainerCopyResult] = field(default_factory=list)

    @property
    def total_upserted(self) -> int:
        return sum(item.upserted for item in self.containers)


def copy_container(
    source: DocumentsRepository,
    target: DocumentsRepository,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> ContainerCopyResult:
    result = ContainerCopyResult(container=source.container)
    for batch in source.iter_batches(batch_size):
        result.fetched += len(batch)
        try:
            result.upserted += target.upsert_many(batch)
        except DocumentWriteError as exc:
            logger.exception("Upsert failed for id=%s", exc.doc_id, extra={"container": source.container})
            raise
    logger.info(
        "Copied container",
        extra={"container": source.container, "fetched": result.fetched, "upserted": result.upserted},
    )
    return result


def migrate_containers(
    source_engine: Engine,
    target_engine: Engine,
    *,
    containers: Iterable[ContainerEnum] = MIGRATED_CONTAINERS,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> MigrationReport:
    """Create the target schema when absent and copy every listed container."""
    init_db(target_engine)
    source_factory = sessionmaker(bind=source_engine, autocommit=False, autoflush=False, future=True)
    target_factory = sessionmaker(bind=target_engine, autocommit=False, autoflush=False, future=True)

    report = MigrationReport()
    with source_factory() as source_session, target_factory() as target_session:
        for container in containers:
            report.containers.append(
                copy_container(
                    DocumentsRepository(source_session, container),
                    DocumentsRepository(target_session, container),
                    batch_size=batch_size,
                )
            )
    logger.info("Migration complete", extra={"total_upserted": report.total_upserted})
    return report
