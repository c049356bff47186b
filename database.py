"""
Document store

The entire persistent state lives in one JSON file. Requests load the whole
document, mutate it in memory and write the whole document back.
"""

import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from typing import Iterator

from pydantic import ValidationError

from schemas import Document, Product

logger = logging.getLogger(__name__)

DATABASE_FILE = os.getenv("DATABASE_FILE", "db.json")

PLACEHOLDER_IMAGE = "https://via.placeholder.com/200"

SEED_PRODUCTS = [
    {"id": "p1", "title": "Smartphone X", "category": "electronics", "price": 29999, "image": PLACEHOLDER_IMAGE, "rating": 4.5},
    {"id": "p2", "title": "Wireless Earbuds", "category": "electronics", "price": 4999, "image": PLACEHOLDER_IMAGE, "rating": 4.2},
    {"id": "p3", "title": "Luxury Perfume", "category": "beauty", "price": 2599, "image": PLACEHOLDER_IMAGE, "rating": 4.3},
    {"id": "p4", "title": "Stylish T-Shirt", "category": "clothes", "price": 999, "image": PLACEHOLDER_IMAGE, "rating": 4.4},
    {"id": "p5", "title": "Home LED Lamp", "category": "home", "price": 1499, "image": PLACEHOLDER_IMAGE, "rating": 4.1},
]


class StoreError(RuntimeError):
    """The document could not be read or written."""


class DocumentStore:
    def __init__(self, path: str):
        self.path = path
        self._write_lock = threading.Lock()

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> Document:
        try:
            # Bytes go straight to pydantic, which reports bad UTF-8 as a ValidationError.
            with open(self.path, "rb") as fh:
                raw = fh.read()
        except OSError as e:
            raise StoreError(f"Cannot read {self.path}: {e}") from e
        try:
            return Document.model_validate_json(raw)
        except ValidationError as e:
            raise StoreError(f"Corrupt document {self.path}: {e.error_count()} error(s)") from e

    def save(self, document: Document) -> None:
        data = document.model_dump_json(by_alias=True, indent=2)
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".db-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(data)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StoreError(f"Cannot write {self.path}: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[Document]:
        """Load a fresh document, yield it for mutation and save it.

        Writers are serialized, so two overlapping transactions never save
        over each other's changes. Nothing is saved if the body raises.
        """
        with self._write_lock:
            document = self.load()
            yield document
            self.save(document)

    def init(self) -> Document:
        """Create the document on first start and seed an empty catalog."""
        with self._write_lock:
            if not self.exists():
                logger.info("Initializing empty document at %s", self.path)
                self.save(Document(users=[], products=[], carts=[], orders=[]))
            document = self.load()
            if not document.products:
                document.products = [Product(**p) for p in SEED_PRODUCTS]
                self.save(document)
                logger.info("Seeded %d sample products", len(document.products))
            return document


db = DocumentStore(DATABASE_FILE)
