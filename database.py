"""
JSON file storage

Each collection lives in its own file under DATA_DIR and is loaded once at
startup. Writes always serialise the whole collection to a temp file and
rename it over the original, so a crash never leaves a torn file behind.

- product -> products.json
- user -> users.json
- sale -> sales.json
"""
import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DATA_DIR = os.getenv("DATA_DIR", "data")

COLLECTION_FILES = {
    "product": "products.json",
    "user": "users.json",
    "sale": "sales.json",
}


class Collection:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock = threading.RLock()
        self._docs: List[dict] = self._load()
        self._next_id = max((d.get("id", 0) for d in self._docs), default=0) + 1

    def _load(self) -> List[dict]:
        if not self.path.exists():
            logger.warning("%s not found, starting with an empty collection", self.path)
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            docs = json.load(f)
        logger.info("Loaded %d documents from %s", len(docs), self.path)
        return docs

    def _write(self, docs: List[dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(docs, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        logger.debug("Wrote %d documents to %s", len(docs), self.path)

    # reads

    def find(self, **filters) -> List[dict]:
        with self.lock:
            return [copy.deepcopy(d) for d in self._docs if _matches(d, filters)]

    def find_one(self, **filters) -> Optional[dict]:
        with self.lock:
            for d in self._docs:
                if _matches(d, filters):
                    return copy.deepcopy(d)
        return None

    def count(self) -> int:
        with self.lock:
            return len(self._docs)

    # writes

    def next_id(self) -> int:
        with self.lock:
            doc_id = self._next_id
            self._next_id += 1
            return doc_id

    @contextmanager
    def transaction(self):
        """Hold the collection lock across a read-modify-write cycle.

        Usage:
            with db["product"].transaction() as products:
                products[0]["stock"] -= 1
            # file rewritten and changes visible on exit

        If the block raises, the working copy is dropped and neither the
        file nor the in-memory collection changes.
        """
        with self.lock:
            working = copy.deepcopy(self._docs)
            yield working
            self._write(working)
            self._docs = working

    def insert_one(self, doc: dict) -> dict:
        with self.transaction() as docs:
            doc = dict(doc)
            if doc.get("id") is None:
                doc["id"] = self.next_id()
            docs.append(doc)
        return copy.deepcopy(doc)

    def update_one(self, doc_id: int, changes: dict) -> Optional[dict]:
        with self.lock:
            if self.find_one(id=doc_id) is None:
                return None
            with self.transaction() as docs:
                doc = next(d for d in docs if d.get("id") == doc_id)
                doc.update(changes)
            return copy.deepcopy(doc)

    def delete_one(self, doc_id: int) -> bool:
        with self.lock:
            if self.find_one(id=doc_id) is None:
                return False
            with self.transaction() as docs:
                docs[:] = [d for d in docs if d.get("id") != doc_id]
            return True


def _matches(doc: dict, filters: dict) -> bool:
    return all(doc.get(k) == v for k, v in filters.items())


class Database:
    def __init__(self, data_dir: Union[str, Path, None] = None):
        self.data_dir: Optional[Path] = None
        self.collections: Dict[str, Collection] = {}
        if data_dir is not None:
            self.load(data_dir)

    def load(self, data_dir: Union[str, Path]) -> None:
        self.data_dir = Path(data_dir)
        self.collections = {
            name: Collection(self.data_dir / filename)
            for name, filename in COLLECTION_FILES.items()
        }

    def __getitem__(self, name: str) -> Collection:
        return self.collections[name]

    def list_collection_names(self) -> List[str]:
        return list(self.collections)


db = Database(DATA_DIR)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    return db[collection_name].insert_one(data)


def get_documents(collection_name: str, **filters) -> List[dict]:
    return db[collection_name].find(**filters)
