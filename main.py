import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pymongo import DESCENDING
from pymongo.database import Database as MongoDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from auth import create_access_token, get_current_user
from database import BOOKINGS, USERS, VEHICLES, Database, get_db, serialize
from schemas import BookingIn, LoginRequest, UserIn, VehicleIn

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

RECENT_VEHICLES_LIMIT = 6
# fields a vehicle update may never overwrite
PROTECTED_VEHICLE_FIELDS = ("_id", "id", "userEmail", "createdAt")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.JWT_SECRET == config.DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET is not set, tokens are signed with the public default secret")
    database = Database()
    try:
        database.open()
    except PyMongoError as e:
        logger.error("MongoDB connection failed: %s", e, exc_info=True)
        raise
    app.state.database = database
    yield
    database.close()


app = FastAPI(title="TravelEase API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Error processing %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc), "type": type(exc).__name__},
    )

# ---------- Utilities ----------

def parse_object_id(value: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise HTTPException(400, "Invalid id")
    return ObjectId(value)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)

# ---------- Users ----------

def user_exists(user: dict) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={"message": "User already exists", "user": jsonable_encoder(serialize(user))},
    )


@app.post("/users", status_code=201)
def register(body: UserIn, db: MongoDatabase = Depends(get_db)):
    existing = db[USERS].find_one({"email": body.email})
    if existing:
        return user_exists(existing)
    doc = body.model_dump(exclude_unset=True)
    # the storage key is always generated by the database
    doc.pop("_id", None)
    doc.pop("id", None)
    try:
        res = db[USERS].insert_one(doc)
    except DuplicateKeyError:
        # a concurrent registration for the same email won
        existing = db[USERS].find_one({"email": body.email})
        if existing is None:
            raise
        return user_exists(existing)
    logger.info("Registered user %s", body.email)
    doc.pop("_id", None)
    doc["id"] = str(res.inserted_id)
    return {"message": "User created", "insertedId": doc["id"], "user": doc}


@app.post("/login")
def login(body: LoginRequest, db: MongoDatabase = Depends(get_db)):
    user = db[USERS].find_one({"email": body.email})
    if not user:
        raise HTTPException(401, "User not found")
    user = serialize(user)
    token = create_access_token(user["email"], user["id"])
    return {"token": token, "user": user}

# ---------- Vehicles ----------

@app.get("/vehicles")
def list_recent_vehicles(db: MongoDatabase = Depends(get_db)):
    docs = db[VEHICLES].find({}).sort([("createdAt", DESCENDING), ("_id", DESCENDING)]).limit(RECENT_VEHICLES_LIMIT)
    return [serialize(d) for d in docs]


@app.get("/allVehicles")
def list_all_vehicles(db: MongoDatabase = Depends(get_db), user: Dict = Depends(get_current_user)):
    docs = db[VEHICLES].find({}).sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
    return [serialize(d) for d in docs]


@app.get("/vehicles/{vehicle_id}")
def get_vehicle(vehicle_id: str, db: MongoDatabase = Depends(get_db)):
    oid = parse_object_id(vehicle_id)
    doc = db[VEHICLES].find_one({"_id": oid})
    if not doc:
        raise HTTPException(404, "Vehicle not found")
    return serialize(doc)


@app.post("/vehicles", status_code=201)
def create_vehicle(body: VehicleIn, db: MongoDatabase = Depends(get_db), user: Dict = Depends(get_current_user)):
    doc = body.model_dump(exclude_unset=True)
    doc.pop("_id", None)
    doc.pop("id", None)
    doc.setdefault("userEmail", user["email"])
    doc["createdAt"] = now_utc()
    res = db[VEHICLES].insert_one(doc)
    return {"insertedId": str(res.inserted_id)}


@app.put("/vehicles/{vehicle_id}")
def update_vehicle(
    vehicle_id: str,
    body: VehicleIn,
    db: MongoDatabase = Depends(get_db),
    user: Dict = Depends(get_current_user),
):
    oid = parse_object_id(vehicle_id)
    changes = body.model_dump(exclude_unset=True)
    for field in PROTECTED_VEHICLE_FIELDS:
        changes.pop(field, None)
    if not changes:
        raise HTTPException(400, "No fields to update")
    changes["updatedAt"] = now_utc()
    res = db[VEHICLES].update_one({"_id": oid}, {"$set": changes})
    if res.matched_count == 0:
        raise HTTPException(404, "Vehicle not found")
    return {"message": "Vehicle updated", "modifiedCount": res.modified_count}


@app.delete("/vehicles/{vehicle_id}")
def delete_vehicle(vehicle_id: str, db: MongoDatabase = Depends(get_db), user: Dict = Depends(get_current_user)):
    oid = parse_object_id(vehicle_id)
    res = db[VEHICLES].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise HTTPException(404, "Vehicle not found")
    return {"message": "Vehicle deleted", "deletedCount": res.deleted_count}

# ---------- Bookings ----------

@app.get("/bookings")
def list_my_bookings(db: MongoDatabase = Depends(get_db), user: Dict = Depends(get_current_user)):
    docs = db[BOOKINGS].find({"userEmail": user["email"]}).sort("bookedAt", DESCENDING)
    return [serialize(d) for d in docs]


@app.post("/bookings")
def create_booking(body: BookingIn, db: MongoDatabase = Depends(get_db), user: Dict = Depends(get_current_user)):
    if body.userEmail != user["email"]:
        raise HTTPException(403, "Forbidden: cannot book for another user")
    if db[BOOKINGS].find_one({"vehicleId": body.vehicleId}):
        raise HTTPException(400, "Vehicle already booked")
    doc = body.model_dump(exclude_unset=True)
    doc.pop("_id", None)
    doc.pop("id", None)
    doc["bookedAt"] = now_utc()
    try:
        res = db[BOOKINGS].insert_one(doc)
    except DuplicateKeyError:
        # lost the race against a concurrent booking for the same vehicle
        raise HTTPException(400, "Vehicle already booked")
    logger.info("Vehicle %s booked by %s", body.vehicleId, user["email"])
    return {"message": "Booking created", "bookingId": str(res.inserted_id)}


@app.delete("/bookings/{booking_id}")
def cancel_booking(booking_id: str, db: MongoDatabase = Depends(get_db), user: Dict = Depends(get_current_user)):
    oid = parse_object_id(booking_id)
    res = db[BOOKINGS].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise HTTPException(404, "Booking not found")
    return {"message": "Booking cancelled", "deletedCount": res.deleted_count}

# ---------- Root & Health ----------

@app.get("/", response_class=PlainTextResponse)
def read_root():
    return "TravelEase server running..."


@app.get("/health")
def health(db: MongoDatabase = Depends(get_db)):
    response = {"status": "healthy", "database": "unavailable"}
    try:
        db.client.admin.command("ping")
        response["database"] = "connected"
    except PyMongoError as e:
        logger.warning("Health check ping failed: %s", e)
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
