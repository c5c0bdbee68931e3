"""
Database Schemas for the Organic Marketplace

Each Pydantic model describes one record kind stored in the document tree.
Field names follow the stored camelCase layout:

- companies/{companyId}                      -> Company
- companies/{companyId}/products/{productId} -> Product
- user/{uid}/profile                         -> UserProfile
- user/{uid}/addtocart/{itemKey}             -> CartItem
- user/{uid}/addfav/{productId}              -> FavoriteItem
- user/{uid}/order/{orderId}                 -> Order
- registrations/{uid}                        -> Registration
- products/{productId}/reviews/{uid}         -> Review

Accounts for the auth provider live in the plain "account" collection.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

PHONE_PATTERN = r"^[0-9]{10}$"
PINCODE_PATTERN = r"^[0-9]{6}$"


class Account(BaseModel):
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")


class Nutrient(BaseModel):
    name: str
    value: str


class Category(BaseModel):
    main: str
    sub: str


class Dimensions(BaseModel):
    weight: Optional[float] = None
    weightUnit: Optional[str] = None
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    dimensionUnit: Optional[str] = None


class Product(BaseModel):
    productName: str = Field(..., min_length=1)
    productDescription: str = ""
    originalPrice: float = Field(..., ge=0)
    discountPrice: Optional[float] = Field(None, ge=0)
    stockQuantity: int = Field(0, ge=0)
    productPhotoUrls: List[str] = Field(..., min_length=1)
    nutrients: List[Nutrient] = []
    categories: List[Category] = []
    dimensions: Optional[Dimensions] = None
    outOfStock: bool = False

    @model_validator(mode="after")
    def discount_not_above_original(self):
        if self.discountPrice is not None and self.discountPrice > self.originalPrice:
            raise ValueError("discountPrice must not exceed originalPrice")
        return self


class ProductUpdate(BaseModel):
    productName: Optional[str] = Field(None, min_length=1)
    productDescription: Optional[str] = None
    originalPrice: Optional[float] = Field(None, ge=0)
    discountPrice: Optional[float] = Field(None, ge=0)
    stockQuantity: Optional[int] = Field(None, ge=0)
    productPhotoUrls: Optional[List[str]] = None
    nutrients: Optional[List[Nutrient]] = None
    categories: Optional[List[Category]] = None
    dimensions: Optional[Dimensions] = None
    outOfStock: Optional[bool] = None


class Company(BaseModel):
    uid: str
    companyName: str = Field(..., min_length=1)
    email: EmailStr
    phoneNumber: str
    companyPhotoUrl: str = ""


class CartItem(BaseModel):
    productId: str
    productName: str
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0)
    addedAt: int


class FavoriteItem(BaseModel):
    productId: str
    productName: str
    price: float
    addedAt: int


class UserProfile(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    address: str = ""
    pincode: Optional[str] = Field(None, pattern=PINCODE_PATTERN)
    lat: float = 0
    lng: float = 0


class ProfilePatch(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Optional[str] = None
    pincode: Optional[str] = Field(None, pattern=PINCODE_PATTERN)
    lat: Optional[float] = None
    lng: Optional[float] = None


class DeliveryAddress(BaseModel):
    # Checked by checkout.validate_delivery_address so the first failing rule wins.
    name: str = ""
    phone: str = ""
    altPhone: Optional[str] = None
    street: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""


class Location(BaseModel):
    lat: float = 0
    lng: float = 0


class Order(BaseModel):
    items: List[dict]
    subtotal: float
    shipping: float
    total: float
    status: Literal["pending", "confirmed", "shipped", "delivered", "cancelled"] = "pending"
    purchaseTime: int
    deliveryAddress: dict
    orderLocation: Location
    paymentId: Optional[str] = None


class Registration(BaseModel):
    registrationType: str
    companyName: str = Field(..., min_length=1)
    registerNo: str
    companyType: str
    certificateUrl: str
    isoUrl: Optional[str] = None
    gstNo: Optional[str] = None
    address: Optional[str] = None
    contactEmail: Optional[EmailStr] = None
    contactPhone: Optional[str] = None


class Review(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    reviewText: str = ""
