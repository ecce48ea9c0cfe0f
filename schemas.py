"""
Request schemas for TravelEase

Users, vehicles and bookings are stored as free-form MongoDB documents, so
every model accepts extra fields and passes them through to the collection.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


# Users (collection "users"), identified by email
class UserIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: str = Field(..., min_length=3, description="Unique email")
    name: Optional[str] = None
    photoURL: Optional[str] = None


class LoginRequest(BaseModel):
    email: str


# Vehicle listings (collection "vehicles")
class VehicleIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    vehicleName: Optional[str] = None
    category: Optional[str] = None
    pricePerDay: Optional[float] = Field(None, ge=0)
    location: Optional[str] = None
    description: Optional[str] = None
    coverImage: Optional[str] = None
    userEmail: Optional[str] = Field(None, description="Owner of the listing")


# Bookings (collection "bookings"), one per vehicle
class BookingIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    vehicleId: str
    userEmail: str
