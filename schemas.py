"""
Database Schemas

Define your MongoDB collection schemas here using Pydantic models.
Each Pydantic model represents a collection in your database.
Model name lowercased is the collection name.

Catalog documents keep the camelCase field names the admin panel sends and
receives; timestamps (created_at / updated_at) are added by database.py.
"""

from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

Availability = Literal["InStock", "OutOfStock", "PreOrder"]
Role = Literal["user", "admin"]
Provider = Literal["credentials", "google", "both"]
Gender = Literal["male", "female", "other", "prefer-not-to-say"]


class Brand(BaseModel):
    brandName: str = Field(..., min_length=2, max_length=100)
    brandDescription: str = Field(..., min_length=10, max_length=500)
    brandImage: str
    isActive: bool = True


class Category(BaseModel):
    categoryName: str = Field(..., min_length=2, max_length=100)
    categoryDescription: str = Field(..., min_length=10, max_length=500)
    categoryImage: str
    isActive: bool = True


class Component(BaseModel):
    componentName: str = Field(..., min_length=2, max_length=100)
    filterLabels: List[str] = Field(..., min_length=1, description='e.g. ["Capacity", "Speed"]')
    isActive: bool = True


class FilterValue(BaseModel):
    filterLabel: str
    filterValue: str


class Specification(BaseModel):
    label: str
    value: str


class ComponentItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    itemName: str = Field(..., min_length=2, max_length=150)
    slug: str = Field(..., min_length=2, max_length=200)
    component: ObjectId
    filterValues: List[FilterValue] = Field(..., min_length=1)
    brand: Optional[ObjectId] = None
    model: str = Field(..., min_length=2, max_length=100)
    unitPrice: float = Field(..., ge=0)
    availability: Availability = "InStock"
    description: str = Field(..., min_length=10, max_length=2000)
    specifications: List[Specification] = Field(default_factory=list)
    mainImage: str
    subImages: List[str] = Field(default_factory=list)
    isNewArrival: bool = False
    isActive: bool = True


class Accessory(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    accessoryName: str = Field(..., min_length=2, max_length=150)
    slug: str = Field(..., min_length=2, max_length=200)
    brand: Optional[ObjectId] = None
    category: Optional[ObjectId] = None
    description: str = Field(..., min_length=10, max_length=1500)
    offerPrice: float = Field(..., ge=0)
    oldPrice: Optional[float] = Field(None, ge=0)
    mainImage: str
    subImages: List[str] = Field(default_factory=list)
    isNewArrival: bool = False
    isActive: bool = True


class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: Optional[str] = Field(None, description="BCrypt hashed password, absent for Google-only users")
    contactNumbers: List[str] = Field(default_factory=list)
    addresses: List[str] = Field(default_factory=list)
    birthday: Optional[datetime] = None
    gender: Optional[Gender] = None
    image: Optional[str] = None
    role: Role = "user"
    provider: Provider = "credentials"
    googleId: Optional[str] = None
    refreshToken: Optional[str] = None
    refreshTokenExpiry: Optional[datetime] = None
    isActive: bool = True

    @model_validator(mode="after")
    def credential_users_need_a_contact_number(self):
        # Google sign-ups arrive without contact numbers
        if self.provider == "credentials" and not self.contactNumbers:
            raise ValueError("At least one contact number is required")
        return self


# Request bodies

class RegisterInput(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    confirmPassword: Optional[str] = None
    contactNumbers: Optional[List[str]] = None
    addresses: Optional[List[str]] = None
    birthday: Optional[str] = None
    gender: Optional[str] = None


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class GoogleSignInInput(BaseModel):
    idToken: str


class AccountUpdateInput(BaseModel):
    name: Optional[str] = None
    contactNumbers: Optional[List[str]] = None
    addresses: Optional[List[str]] = None
    birthday: Optional[str] = None
    gender: Optional[str] = None


class CheckSlugRequest(BaseModel):
    slug: Optional[str] = None
    entityType: Optional[str] = None
    excludeId: Optional[str] = None


class DeleteImageRequest(BaseModel):
    imageUrl: Optional[str] = None
