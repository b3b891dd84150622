from __future__ import annotations

from collections.abc import Callable, Iterable
from copy import deepcopy
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from foundry.db.enums import ContainerEnum
from foundry.db.models import Document

DocumentPredicate = Callable[[dict[str, Any]], bool]


class DocumentWriteError(RuntimeError):
    def __init__(self, container: str, doc_id: Any, cause: Exception) -> None:
        super().__init__(f"Failed to write {container}/{doc_id}: {cause}")
        self.container = container
        self.doc_id = doc_id


class DocumentsRepository:
    """Whole-document reads and writes for one container."""

    def __init__(self, session: Session, container: ContainerEnum | str) -> None:
        self.session = session
        self.container = container.value if isinstance(container, ContainerEnum) else str(container)

    def _row(self, doc_id: str) -> Optional[Document]:
        return self.session.get(Document, (self.container, doc_id))

    def get(self, doc_id: str) -> Optional[dict[str, Any]]:
        row = self._row(doc_id)
        if row is None:
            return None
        return deepcopy(row.data)

    def stage(self, data: dict[str, Any]) -> dict[str, Any]:
        """Write one document into the open transaction without committing."""
        doc_id = str(data.get("id") or "").strip()
        if not doc_id:
            raise ValueError(f"Cannot upsert a document without an id into {self.container}")
        payload = deepcopy(data)
        row = self._row(doc_id)
        if row is None:
            self.session.add(Document(container=self.container, id=doc_id, data=payload))
        else:
            # Assign a fresh object so the JSON column is flagged dirty.
            row.data = payload
        self.session.flush()
        return payload

    def upsert(self, data: dict[str, Any]) -> dict[str, Any]:
        payload = self.stage(data)
        self.session.commit()
        return deepcopy(payload)

    def upsert_many(self, documents: Iterable[dict[str, Any]]) -> int:
        """Write a batch in one transaction; any failure rolls back the whole batch."""
        count = 0
        for data in documents:
            try:
                self.stage(data)
            except Exception as exc:
                self.session.rollback()
                raise DocumentWriteError(self.container, data.get("id"), exc) from exc
            count += 1
        self.session.commit()
        return count

    def delete(self, doc_id: str) -> bool:
        result = self.session.execute(
            delete(Document).where(Document.container == self.container, Document.id == doc_id)
        )
        self.session.commit()
        return bool(result.rowcount)

    def list(self) -> list[dict[str, Any]]:
        stmt = select(Document).where(Document.container == self.container).order_by(Document.id)
        return [deepcopy(row.data) for row in self.session.scalars(stmt).all()]

    def query(self, predicate: DocumentPredicate, limit: Optional[int] = None) -> list[dict[str, Any]]:
        matches: list[dict[str, Any]] = []
        for data in self.list():
            if predicate(data):
                matches.append(data)
                if limit is not None and len(matches) >= limit:
                    break
        return matches

    def exists(self, predicate: DocumentPredicate) -> bool:
        return bool(self.query(predicate, limit=1))

    def iter_batches(self, batch_size: int) -> Iterable[list[dict[str, Any]]]:
        batch: list[dict[str, Any]] = []
        for data in self.list():
            batch.append(data)
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch
