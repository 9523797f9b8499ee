"""Record storage: MongoDB when configured and reachable, JSON files otherwise.

Both backends expose the same small collection API and enforce unique indexes
themselves, so callers rely on ``DuplicateRecord`` rather than check-then-insert.
"""
import os
import json
import copy
import logging
import threading

from pymongo import ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from .errors import DuplicateRecord

logger = logging.getLogger(__name__)


def read_json(path):
    with open(path, "r") as f:
        return json.load(f)


def write_json(path, data):
    tmp_path = path + ".tmp"
    with open(tmp_path, "w") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp_path, path)


def _matches(doc, query):
    return all(doc.get(k) == v for k, v in query.items())


class JsonCollection:
    def __init__(self, path, name):
        self.path = path
        self.name = name
        self._lock = threading.Lock()
        self._unique = []
        if not os.path.exists(path):
            write_json(path, [])

    def create_unique_index(self, *fields):
        if fields not in self._unique:
            self._unique.append(fields)

    def insert_one(self, doc):
        doc = copy.deepcopy(doc)
        with self._lock:
            docs = read_json(self.path)
            for fields in self._unique:
                key = tuple(doc.get(f) for f in fields)
                if any(tuple(d.get(f) for f in fields) == key for d in docs):
                    raise DuplicateRecord(self.name, dict(zip(fields, key)))
            docs.append(doc)
            write_json(self.path, docs)
        return copy.deepcopy(doc)

    def find_one(self, query):
        with self._lock:
            docs = read_json(self.path)
        return next((d for d in docs if _matches(d, query)), None)

    def find(self, query=None):
        with self._lock:
            docs = read_json(self.path)
        return [d for d in docs if _matches(d, query or {})]

    def update_one(self, query, changes):
        with self._lock:
            docs = read_json(self.path)
            for d in docs:
                if _matches(d, query):
                    d.update(changes)
                    write_json(self.path, docs)
                    return True
        return False


class MongoCollection:
    def __init__(self, collection):
        self._col = collection
        self.name = collection.name

    def create_unique_index(self, *fields):
        self._col.create_index([(f, ASCENDING) for f in fields], unique=True)

    def insert_one(self, doc):
        doc = copy.deepcopy(doc)
        try:
            self._col.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateRecord(self.name, e.details.get("keyValue") if e.details else None) from e
        doc.pop("_id", None)
        return doc

    def find_one(self, query):
        return self._col.find_one(query, {"_id": 0})

    def find(self, query=None):
        return list(self._col.find(query or {}, {"_id": 0}))

    def update_one(self, query, changes):
        res = self._col.update_one(query, {"$set": changes})
        return res.matched_count > 0


class JsonDatabase:
    backend = "json"

    def __init__(self, data_dir):
        self.data_dir = data_dir
        os.makedirs(data_dir, exist_ok=True)
        self._collections = {}
        self._lock = threading.Lock()

    def collection(self, name):
        with self._lock:
            if name not in self._collections:
                path = os.path.join(self.data_dir, f"{name}.json")
                self._collections[name] = JsonCollection(path, name)
            return self._collections[name]


class MongoDatabase:
    backend = "mongo"

    def __init__(self, db):
        self._db = db

    def collection(self, name):
        return MongoCollection(self._db[name])


def open_database(settings):
    """Connect to MongoDB if MONGO_URI is set, else fall back to JSON storage."""
    if settings.mongo_uri:
        try:
            client = MongoClient(settings.mongo_uri, serverSelectionTimeoutMS=3000)
            # trigger server selection
            client.server_info()
            logger.info("Connected to MongoDB")
            return MongoDatabase(client.get_database())
        except ServerSelectionTimeoutError:
            logger.warning("Could not connect to MongoDB, falling back to JSON storage")
    else:
        logger.info("MONGO_URI not set; using JSON storage in %s", settings.data_dir)
    return JsonDatabase(settings.data_dir)
