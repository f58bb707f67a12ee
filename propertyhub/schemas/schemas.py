from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..constants import (
    DOCUMENT_ACCESS_LEVELS,
    DOCUMENT_CATEGORIES,
    IMAGE_CATEGORIES,
    PARKING_TYPES,
    PROPERTY_STATUSES,
)
from ..services.image_locations import is_local_upload_url, is_valid_image_location
from ..services.property_images import coerce_bool


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    return value


def _parse_loose_datetime(value: Any) -> Any:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return None
        try:
            return datetime.fromisoformat(trimmed.replace("Z", "+00:00"))
        except ValueError:
            return None
    return value


def _validated_image_url(value: Any) -> Any:
    value = _blank_to_none(value)
    if value is None:
        return None
    if not is_valid_image_location(value):
        raise ValueError("Image URL must be a valid URL or upload path")
    return value


# --- Amenities ---


class UtilityAmenities(ApiModel):
    water: Optional[bool] = None
    electricity: Optional[bool] = None
    gas: Optional[bool] = None
    internet: Optional[bool] = None
    cable: Optional[bool] = None
    trash: Optional[bool] = None
    sewer: Optional[bool] = None


class FeatureAmenities(ApiModel):
    pool: Optional[bool] = None
    gym: Optional[bool] = None
    laundry: Optional[bool] = None
    elevator: Optional[bool] = None
    balcony: Optional[bool] = None
    air_conditioning: Optional[bool] = None
    dishwasher: Optional[bool] = None
    fireplace: Optional[bool] = None
    storage: Optional[bool] = None


class SecurityAmenities(ApiModel):
    gated: Optional[bool] = None
    cameras: Optional[bool] = None
    alarm: Optional[bool] = None
    doorman: Optional[bool] = None
    intercom: Optional[bool] = None


class AccessibilityAmenities(ApiModel):
    wheelchair_accessible: Optional[bool] = None
    elevator: Optional[bool] = None
    ramps: Optional[bool] = None
    accessible_parking: Optional[bool] = None


class ParkingAmenities(ApiModel):
    available: Optional[bool] = None
    type: Optional[str] = None
    spaces: Optional[int] = Field(default=None, ge=0)
    covered: Optional[bool] = None

    @field_validator("type", mode="before")
    @classmethod
    def _parking_type(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is None:
            return None
        upper = str(value).upper()
        if upper not in PARKING_TYPES:
            raise ValueError(f"Parking type must be one of {', '.join(PARKING_TYPES)}")
        return upper


class PetAmenities(ApiModel):
    allowed: Optional[bool] = None
    dogs_allowed: Optional[bool] = None
    cats_allowed: Optional[bool] = None
    deposit: Optional[float] = Field(default=None, ge=0)
    weight_limit: Optional[float] = Field(default=None, ge=0)
    restrictions: Optional[str] = Field(default=None, max_length=500)


class PropertyAmenities(ApiModel):
    utilities: Optional[UtilityAmenities] = None
    features: Optional[FeatureAmenities] = None
    security: Optional[SecurityAmenities] = None
    accessibility: Optional[AccessibilityAmenities] = None
    parking: Optional[ParkingAmenities] = None
    pets: Optional[PetAmenities] = None


# --- Properties ---

_REQUIRED_LABELS = {
    "name": "Property name",
    "address": "Address",
    "city": "City",
    "country": "Country",
    "property_type": "Property type",
}


class PropertyBase(ApiModel):
    state: Optional[str] = None
    zip_code: Optional[str] = None
    postcode: Optional[str] = None
    type: Optional[str] = None
    year_built: Optional[int] = None
    total_area: Optional[float] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    cover_image: Optional[str] = None
    images: Optional[List[Any]] = None
    image_metadata: Optional[List[Any]] = None
    lot_size: Optional[float] = None
    building_size: Optional[float] = None
    number_of_floors: Optional[int] = Field(default=None, ge=1)
    construction_type: Optional[str] = None
    heating_system: Optional[str] = None
    cooling_system: Optional[str] = None
    amenities: Optional[PropertyAmenities] = None
    purchase_price: Optional[float] = None
    purchase_date: Optional[datetime] = None
    current_market_value: Optional[float] = None
    annual_property_tax: Optional[float] = None
    annual_insurance: Optional[float] = None
    monthly_hoa: Optional[float] = Field(default=None, alias="monthlyHOA")

    @field_validator("name", "address", "city", "country", "property_type", mode="before", check_fields=False)
    @classmethod
    def _required_text(cls, value: Any, info: ValidationInfo) -> Any:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{_REQUIRED_LABELS[info.field_name]} is required")
        return value.strip()

    @field_validator(
        "state",
        "zip_code",
        "postcode",
        "type",
        "description",
        "cover_image",
        "construction_type",
        "heating_system",
        "cooling_system",
        "year_built",
        "total_area",
        "lot_size",
        "building_size",
        "number_of_floors",
        "purchase_price",
        "current_market_value",
        "annual_property_tax",
        "annual_insurance",
        "monthly_hoa",
        mode="before",
    )
    @classmethod
    def _optional_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("status", mode="before", check_fields=False)
    @classmethod
    def _status(cls, value: Any) -> Any:
        if not isinstance(value, str) or value.strip().upper() not in PROPERTY_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(PROPERTY_STATUSES)}")
        return value.strip().upper()

    @field_validator("year_built")
    @classmethod
    def _year_built(cls, value: Optional[int]) -> Optional[int]:
        if value is None:
            return None
        current_year = datetime.now().year
        if value < 1800 or value > current_year:
            raise ValueError(f"Year built must be between 1800 and {current_year}")
        return value

    @field_validator("image_url", mode="before")
    @classmethod
    def _image_url(cls, value: Any) -> Any:
        return _validated_image_url(value)

    @field_validator("purchase_date", mode="before")
    @classmethod
    def _purchase_date(cls, value: Any) -> Any:
        return _parse_loose_datetime(value)


class PropertyCreate(PropertyBase):
    name: str
    address: str
    city: str
    country: str
    property_type: Optional[str] = None
    status: str = "ACTIVE"
    total_units: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _require_property_type(self) -> "PropertyCreate":
        if not self.property_type and not self.type:
            raise ValueError("Property type is required")
        return self


class PropertyUpdate(PropertyBase):
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    property_type: Optional[str] = None
    status: Optional[str] = None
    total_units: Optional[int] = Field(default=None, ge=0)


class PropertyImageRead(ApiModel):
    id: Union[int, str]
    property_id: int
    image_url: str
    caption: Optional[str] = None
    category: str = "OTHER"
    is_primary: bool
    display_order: int
    uploaded_by_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserSummary(ApiModel):
    id: int
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None


class PropertyOwnerRead(ApiModel):
    id: int
    owner_id: int
    ownership_percentage: float
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    owner: Optional[UserSummary] = None


class UnitSummary(ApiModel):
    id: int
    unit_number: str
    status: str
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    rent_amount: Optional[float] = None


class OccupancyStats(ApiModel):
    occupied: int
    vacant: int
    maintenance: int
    total: int
    occupancy_rate: float


class PropertyCounts(ApiModel):
    units: int = 0
    jobs: int = 0
    inspections: int = 0


class PropertyRead(ApiModel):
    id: int
    name: str
    address: str
    city: str
    state: Optional[str] = None
    zip_code: Optional[str] = None
    postcode: Optional[str] = None
    country: str
    property_type: str
    type: str
    year_built: Optional[int] = None
    total_units: int
    total_area: Optional[float] = None
    status: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    cover_image: Optional[str] = None
    images: List[PropertyImageRead] = []
    lot_size: Optional[float] = None
    building_size: Optional[float] = None
    number_of_floors: Optional[int] = None
    construction_type: Optional[str] = None
    heating_system: Optional[str] = None
    cooling_system: Optional[str] = None
    amenities: Optional[Dict[str, Any]] = None
    purchase_price: Optional[float] = None
    purchase_date: Optional[datetime] = None
    current_market_value: Optional[float] = None
    annual_property_tax: Optional[float] = None
    annual_insurance: Optional[float] = None
    monthly_hoa: Optional[float] = Field(default=None, alias="monthlyHOA")
    manager_id: int
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    counts: Optional[PropertyCounts] = None
    occupancy_stats: Optional[OccupancyStats] = None


class PropertyDetail(PropertyRead):
    manager: Optional[UserSummary] = None
    owners: List[PropertyOwnerRead] = []
    units: List[UnitSummary] = []
    unit_count: int = 0


class PropertyListResponse(ApiModel):
    items: List[PropertyRead]
    total: int
    page: int
    has_more: bool


class PropertyResponse(ApiModel):
    success: bool = True
    property: PropertyDetail


class ActivityItem(ApiModel):
    id: str
    type: str
    title: str
    status: Optional[str] = None
    priority: Optional[str] = None
    description: Optional[str] = None
    date: datetime


class PropertyActivityResponse(ApiModel):
    success: bool = True
    activities: List[ActivityItem]


class PropertyOwnerCreate(ApiModel):
    owner_id: int
    ownership_percentage: float = Field(default=100.0, ge=0, le=100)


class SuccessResponse(ApiModel):
    success: bool = True
    message: Optional[str] = None


# --- Images ---


def _boolean_like(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    coerced = coerce_bool(value)
    if coerced is None:
        raise ValueError("isPrimary must be a boolean")
    return coerced


def _image_category(value: Any) -> Any:
    value = _blank_to_none(value)
    if value is None:
        return None
    upper = str(value).upper()
    if upper not in IMAGE_CATEGORIES:
        raise ValueError(f"Category must be one of {', '.join(IMAGE_CATEGORIES)}")
    return upper


class PropertyImageCreate(ApiModel):
    image_url: str
    caption: Optional[str] = Field(default=None, max_length=500)
    alt_text: Optional[str] = Field(default=None, max_length=500)
    is_primary: Optional[bool] = None
    category: str = "OTHER"

    @field_validator("image_url", mode="before")
    @classmethod
    def _image_url(cls, value: Any) -> Any:
        validated = _validated_image_url(value)
        if validated is None:
            raise ValueError("Image URL is required")
        return validated

    @field_validator("caption", "alt_text", mode="before")
    @classmethod
    def _caption(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("is_primary", mode="before")
    @classmethod
    def _is_primary(cls, value: Any) -> Any:
        return _boolean_like(value)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> Any:
        return _image_category(value) or "OTHER"

    @property
    def resolved_caption(self) -> Optional[str]:
        return self.caption if self.caption is not None else self.alt_text


class PropertyImageUpdate(ApiModel):
    caption: Optional[str] = Field(default=None, max_length=500)
    alt_text: Optional[str] = Field(default=None, max_length=500)
    is_primary: Optional[bool] = None
    category: Optional[str] = None

    @field_validator("caption", "alt_text", mode="before")
    @classmethod
    def _caption(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("is_primary", mode="before")
    @classmethod
    def _is_primary(cls, value: Any) -> Any:
        return _boolean_like(value)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> Any:
        return _image_category(value)

    @model_validator(mode="after")
    def _require_change(self) -> "PropertyImageUpdate":
        provided = self.model_fields_set & {"caption", "alt_text", "is_primary", "category"}
        if not provided:
            raise ValueError("No updates provided")
        return self

    def changes(self) -> Dict[str, Any]:
        updates: Dict[str, Any] = {}
        if "caption" in self.model_fields_set:
            updates["caption"] = self.caption
        elif "alt_text" in self.model_fields_set:
            updates["caption"] = self.alt_text
        if self.is_primary is not None:
            updates["is_primary"] = self.is_primary
        if self.category is not None:
            updates["category"] = self.category
        return updates


class PropertyImageReorder(ApiModel):
    ordered_image_ids: List[int] = Field(min_length=1)


class Pagination(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class PropertyImageListResponse(ApiModel):
    success: bool = True
    images: List[PropertyImageRead]
    pagination: Pagination


class PropertyImageResponse(ApiModel):
    success: bool = True
    image: PropertyImageRead
    cover_image: Optional[str] = None


class PropertyImageReorderResponse(ApiModel):
    success: bool = True
    images: List[PropertyImageRead]
    cover_image: Optional[str] = None


class PropertyImageDeleteResponse(ApiModel):
    success: bool = True
    message: str
    cover_image: Optional[str] = None


# --- Documents ---


class PropertyDocumentCreate(ApiModel):
    file_name: str = Field(min_length=1, max_length=255)
    file_url: str
    file_size: int = Field(gt=0)
    mime_type: str = Field(min_length=1)
    category: str
    description: Optional[str] = Field(default=None, max_length=1000)
    access_level: str = "PROPERTY_MANAGER"
    unit_id: Optional[int] = None

    @field_validator("file_url", mode="before")
    @classmethod
    def _file_url(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("File URL is required")
        trimmed = value.strip()
        if not (trimmed.lower().startswith(("http://", "https://")) or is_local_upload_url(trimmed)):
            raise ValueError("File URL must be an http(s) URL or upload path")
        return trimmed

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> Any:
        upper = str(value or "").strip().upper()
        if upper not in DOCUMENT_CATEGORIES:
            raise ValueError(f"Category must be one of {', '.join(DOCUMENT_CATEGORIES)}")
        return upper

    @field_validator("access_level", mode="before")
    @classmethod
    def _access_level(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "PROPERTY_MANAGER"
        upper = str(value).strip().upper()
        if upper not in DOCUMENT_ACCESS_LEVELS:
            raise ValueError(f"Access level must be one of {', '.join(DOCUMENT_ACCESS_LEVELS)}")
        return upper

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value: Any) -> Any:
        return _blank_to_none(value)


class PropertyDocumentRead(ApiModel):
    id: int
    property_id: int
    unit_id: Optional[int] = None
    file_name: str
    file_url: str
    file_size: int
    mime_type: str
    category: str
    description: Optional[str] = None
    access_level: str
    uploader_id: Optional[int] = None
    uploader: Optional[UserSummary] = None
    uploaded_at: datetime
    download_url: str


class PropertyDocumentListResponse(ApiModel):
    success: bool = True
    documents: List[PropertyDocumentRead]


class PropertyDocumentResponse(ApiModel):
    success: bool = True
    document: PropertyDocumentRead


class PropertyDocumentsCreated(ApiModel):
    success: bool = True
    documents: List[PropertyDocumentRead]


# --- Notes ---


class PropertyNoteWrite(ApiModel):
    content: str

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Note content is required")
        trimmed = value.strip()
        if len(trimmed) > 2000:
            raise ValueError("Note content must be 2000 characters or fewer")
        return trimmed


class NoteAuthor(ApiModel):
    id: int
    name: str
    role: str


class PropertyNoteRead(ApiModel):
    id: int
    property_id: int
    content: str
    author_id: int
    author: Optional[NoteAuthor] = None
    created_at: datetime
    updated_at: datetime


class PropertyNoteListResponse(ApiModel):
    success: bool = True
    notes: List[PropertyNoteRead]


class PropertyNoteResponse(ApiModel):
    success: bool = True
    note: PropertyNoteRead


class HealthResponse(ApiModel):
    status: str
    features: Dict[str, bool]


class PropertyOwnerResponse(ApiModel):
    success: bool = True
    owner: PropertyOwnerRead
