"""
MongoDB access for the TravelEase API.

The client is opened once when the app starts and closed on shutdown.
Route handlers get the database through the ``get_db`` dependency.
"""
import logging
from typing import Optional

from fastapi import Request
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database as MongoDatabase

import config

logger = logging.getLogger(__name__)

USERS = "users"
VEHICLES = "vehicles"
BOOKINGS = "bookings"


class Database:
    def __init__(self, url: str = config.DATABASE_URL, name: str = config.DATABASE_NAME):
        self.url = url
        self.name = name
        self.client: Optional[MongoClient] = None
        self.db: Optional[MongoDatabase] = None

    def open(self) -> MongoDatabase:
        logger.info("Connecting to MongoDB database %s", self.name)
        self.client = MongoClient(self.url, serverSelectionTimeoutMS=5000)
        # MongoClient connects lazily, ping so a bad URL fails at startup
        self.client.admin.command("ping")
        self.db = self.client[self.name]
        ensure_indexes(self.db)
        logger.info("Connected to MongoDB: %s", self.name)
        return self.db

    def close(self):
        if self.client is not None:
            self.client.close()
            logger.info("MongoDB connection closed")
        self.client = None
        self.db = None


def ensure_indexes(db: MongoDatabase):
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    # one booking per vehicle, enforced by the server
    db[BOOKINGS].create_index([("vehicleId", ASCENDING)], unique=True)
    db[BOOKINGS].create_index([("userEmail", ASCENDING)])
    db[VEHICLES].create_index([("createdAt", ASCENDING)])


def get_db(request: Request) -> MongoDatabase:
    return request.app.state.database.db


def serialize(doc: dict) -> dict:
    doc["id"] = str(doc.pop("_id"))
    return doc
