"""
Product and log persistence
Snapshots are plain JSON-compatible lists; stores never see model objects
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List

import structlog

logger = structlog.get_logger()


class ProductStore:
    """Key-value persistence interface used by the registry"""

    def load_products(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def save_products(self, products: List[Dict[str, Any]]):
        raise NotImplementedError

    def load_logs(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def save_logs(self, logs: List[Dict[str, Any]]):
        raise NotImplementedError


class MemoryStore(ProductStore):
    """In-process store, mostly for tests and ephemeral runs"""

    def __init__(self, products=None, logs=None):
        self.products: List[Dict[str, Any]] = list(products or [])
        self.logs: List[Dict[str, Any]] = list(logs or [])
        self.product_saves = 0
        self.log_saves = 0

    def load_products(self) -> List[Dict[str, Any]]:
        return json.loads(json.dumps(self.products))

    def save_products(self, products: List[Dict[str, Any]]):
        self.products = json.loads(json.dumps(products))
        self.product_saves += 1

    def load_logs(self) -> List[Dict[str, Any]]:
        return json.loads(json.dumps(self.logs))

    def save_logs(self, logs: List[Dict[str, Any]]):
        self.logs = json.loads(json.dumps(logs))
        self.log_saves += 1


class JsonFileStore(ProductStore):
    """
    Stores products.json and logs.json in one directory

    Writes go to a temp file that is renamed over the target, so a crash
    mid-write leaves the previous snapshot intact.
    """

    PRODUCTS_FILE = "products.json"
    LOGS_FILE = "logs.json"

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _read(self, name: str) -> List[Dict[str, Any]]:
        path = self.directory / name
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Failed to load snapshot", path=str(path), error=str(e))
            return []

        if not isinstance(data, list):
            logger.warning("Ignoring malformed snapshot", path=str(path))
            return []
        return data

    def _write(self, name: str, data: List[Dict[str, Any]]):
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / name

        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def load_products(self) -> List[Dict[str, Any]]:
        return self._read(self.PRODUCTS_FILE)

    def save_products(self, products: List[Dict[str, Any]]):
        self._write(self.PRODUCTS_FILE, products)

    def load_logs(self) -> List[Dict[str, Any]]:
        return self._read(self.LOGS_FILE)

    def save_logs(self, logs: List[Dict[str, Any]]):
        self._write(self.LOGS_FILE, logs)
