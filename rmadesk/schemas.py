"""
Document schemas for the RMA desk.

Each model maps to a document in the store. Stored documents use camelCase
keys (``contactName``, ``modelNumber`` ...), the Python side uses snake_case;
the alias generator translates between the two.

Collections:
- contacts, brands, serviceCentres, customFields, settings, users
- rmas: RMA cases, each embedding its product line items

RMA documents come in two shapes: current ones carry a ``products`` array,
legacy ones carry a single product's fields flat on the case. Both are parsed
here and normalised into ``RMACase`` before any workflow code sees them.
"""

from __future__ import annotations

import math
import re
from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from rmadesk.errors import ValidationError


def load(schema, data: Dict[str, Any]):
    """Validate ``data`` against a model or TypeAdapter, raising our ValidationError."""
    try:
        if isinstance(schema, TypeAdapter):
            return schema.validate_python(data)
        return schema.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"{field}: {first['msg']}" if field else first["msg"])


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_document(self) -> Dict[str, Any]:
        """Serialise for the store (camelCase keys, JSON types, no id)."""
        return self.model_dump(by_alias=True, mode="json", exclude={"id"}, exclude_none=True)


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Form inputs send "" for untouched optional fields
OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
OptionalEmail = Annotated[Optional[EmailStr], BeforeValidator(_blank_to_none)]


# ---------- Status ----------

class Status(str, Enum):
    PROCESSING = "processing"
    IN_SERVICE_CENTRE = "in_service_centre"
    READY = "ready"
    DELIVERED = "delivered"


STATUS_LABELS = {
    Status.PROCESSING: "Material Received",
    Status.IN_SERVICE_CENTRE: "In Service Centre",
    Status.READY: "Ready to Dispatch",
    Status.DELIVERED: "Delivered",
}


# ---------- Reference data ----------

class Contact(Document):
    id: Optional[str] = None
    company: str
    name: OptionalText = None
    email: EmailStr
    phone: str
    address: OptionalText = None


class Brand(Document):
    id: Optional[str] = None
    name: str


class ServiceCentre(Document):
    id: Optional[str] = None
    name: str
    address: OptionalText = None
    contact_person: OptionalText = None
    phone: OptionalText = None
    email: OptionalEmail = None
    created_at: Optional[str] = None


class ServiceCentreRef(Document):
    id: str
    name: str


# ---------- Custom fields ----------

TRUE_STRINGS = ("true", "on", "yes", "1")
FALSE_STRINGS = ("false", "off", "no", "0")


def label_from_name(name: str) -> str:
    """``serialPrefix`` -> ``Serial Prefix``."""
    label = " ".join(part for part in re.split(r"(?=[A-Z])", name) if part)
    return label[:1].upper() + label[1:]


class CustomFieldBase(Document):
    id: Optional[str] = None
    name: str
    label: str = ""
    required: bool = False
    description: Optional[str] = None

    @model_validator(mode="after")
    def _default_label(self):
        if not self.label:
            self.label = label_from_name(self.name)
        return self

    def coerce(self, value: Any) -> Any:
        """Return ``value`` converted to this field's type, or its default when empty."""
        if value is None or (isinstance(value, str) and not value.strip()):
            if self.required:
                raise ValidationError(f"{self.label} is required")
            return self.default_value
        return self._coerce_present(value)

    def _coerce_present(self, value: Any) -> Any:
        raise NotImplementedError


class TextField(CustomFieldBase):
    type: Literal["text", "textarea", "email", "tel"]
    default_value: Optional[str] = None

    def _coerce_present(self, value):
        value = str(value).strip()
        if self.type == "email" and "@" not in value:
            raise ValidationError(f"{self.label} must be an email address")
        return value


class NumberField(CustomFieldBase):
    type: Literal["number"]
    default_value: Optional[float] = None

    def _coerce_present(self, value):
        if isinstance(value, bool):
            raise ValidationError(f"{self.label} must be a number")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{self.label} must be a number")
        if not math.isfinite(number):
            raise ValidationError(f"{self.label} must be a finite number")
        return int(number) if number.is_integer() else number


class DateField(CustomFieldBase):
    type: Literal["date"]
    default_value: Optional[date] = None

    def _coerce_present(self, value):
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            raise ValidationError(f"{self.label} must be a date (YYYY-MM-DD)")


class SelectField(CustomFieldBase):
    type: Literal["select"]
    options: List[str] = []
    default_value: Optional[str] = None

    @model_validator(mode="after")
    def _default_in_options(self):
        if self.default_value and self.default_value not in self.options:
            raise ValueError(f"default value {self.default_value!r} is not one of the options")
        return self

    def _coerce_present(self, value):
        value = str(value)
        if value not in self.options:
            raise ValidationError(f"{self.label} must be one of: {', '.join(self.options)}")
        return value


class ToggleField(CustomFieldBase):
    type: Literal["checkbox", "switch"]
    default_value: bool = False

    def coerce(self, value):
        # An unticked box is an answer, so "required" never fires here
        if value is None or value == "":
            return self.default_value
        return self._coerce_present(value)

    def _coerce_present(self, value):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        raise ValidationError(f"{self.label} must be true or false")


CustomFieldDefinition = Annotated[
    Union[TextField, NumberField, DateField, SelectField, ToggleField],
    Field(discriminator="type"),
]
custom_field_adapter = TypeAdapter(CustomFieldDefinition)


def parse_custom_field(data: Dict[str, Any]) -> CustomFieldBase:
    return custom_field_adapter.validate_python(data)


# ---------- RMA ----------

class ProductLineItem(Document):
    id: str
    brand: str = ""
    model_number: str = ""
    serial_number: str = ""
    problems_reported: str = ""
    status: Status = Status.PROCESSING
    service_centre: Optional[ServiceCentreRef] = None
    service_centre_id: Optional[str] = None
    service_centre_name: Optional[str] = None
    remark: Optional[str] = None
    otp: Optional[str] = None
    is_ready: Optional[bool] = None
    is_delivered: Optional[bool] = None
    delivered_at: Optional[str] = None
    custom_fields: Dict[str, Any] = {}

    @property
    def label(self) -> str:
        return f"{self.brand} {self.model_number}".strip()

    @property
    def service_centre_label(self) -> Optional[str]:
        if self.service_centre:
            return self.service_centre.name
        return self.service_centre_name


class StatusHistoryEntry(Document):
    status: Status
    timestamp: str
    remark: Optional[str] = None
    product_index: Optional[int] = None
    product_id: Optional[str] = None
    actor: Optional[str] = None


class RMACase(Document):
    id: Optional[str] = None
    contact_id: Optional[str] = None
    contact_name: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    contact_company: str = ""
    comments: str = ""
    products: List[ProductLineItem] = []
    status: Status = Status.PROCESSING
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    status_history: List[StatusHistoryEntry] = []
    legacy: bool = Field(default=False, exclude=True)

    @field_validator("contact_name", "contact_email", "contact_phone", "contact_company", "comments", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    def product(self, product_id: str) -> ProductLineItem:
        for item in self.products:
            if item.id == product_id:
                return item
        raise ValidationError(f"Product {product_id} is not part of RMA {self.id}")

    def index_of(self, product_id: str) -> int:
        for index, item in enumerate(self.products):
            if item.id == product_id:
                return index
        raise ValidationError(f"Product {product_id} is not part of RMA {self.id}")

    def to_document(self) -> Dict[str, Any]:
        doc = super().to_document()
        doc.pop("createdAt", None)
        doc.pop("updatedAt", None)
        if self.legacy:
            # First write of a legacy case moves it onto the products array
            doc.update({key: None for key in LEGACY_PRODUCT_FIELDS})
        return doc


LEGACY_PRODUCT_ID = "legacy"
LEGACY_PRODUCT_FIELDS = (
    "brand", "modelNumber", "serialNumber", "problemsReported", "serviceCentre",
    "serviceCentreId", "serviceCentreName", "remark", "otp", "isReady", "isDelivered",
    "deliveredAt", "customFields",
)


class MultiProductDocument(RMACase):
    """Current shape: products embedded as an array."""

    def normalize(self) -> RMACase:
        return RMACase.model_validate(dict(self))


class LegacyFlatSingleDocument(Document):
    """Old shape: a single product's fields stored directly on the case."""

    id: Optional[str] = None
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_company: Optional[str] = None
    comments: Optional[str] = None
    brand: Optional[str] = None
    model_number: Optional[str] = None
    serial_number: Optional[str] = None
    problems_reported: Optional[str] = None
    status: Status = Status.PROCESSING
    service_centre: Optional[ServiceCentreRef] = None
    service_centre_id: Optional[str] = None
    service_centre_name: Optional[str] = None
    remark: Optional[str] = None
    otp: Optional[str] = None
    is_ready: Optional[bool] = None
    is_delivered: Optional[bool] = None
    delivered_at: Optional[str] = None
    custom_fields: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    status_history: List[StatusHistoryEntry] = []

    def normalize(self) -> RMACase:
        product = ProductLineItem(
            id=LEGACY_PRODUCT_ID,
            brand=self.brand or "",
            model_number=self.model_number or "",
            serial_number=self.serial_number or "",
            problems_reported=self.problems_reported or "",
            status=self.status,
            service_centre=self.service_centre,
            service_centre_id=self.service_centre_id,
            service_centre_name=self.service_centre_name,
            remark=self.remark,
            otp=self.otp,
            is_ready=self.is_ready,
            is_delivered=self.is_delivered,
            delivered_at=self.delivered_at,
            custom_fields=self.custom_fields or {},
        )
        return RMACase(
            id=self.id,
            contact_id=self.contact_id,
            contact_name=self.contact_name,
            contact_email=self.contact_email,
            contact_phone=self.contact_phone,
            contact_company=self.contact_company,
            comments=self.comments,
            products=[product],
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
            status_history=self.status_history,
            legacy=True,
        )


def parse_case(doc: Dict[str, Any]) -> RMACase:
    """Load an ``rmas`` document of either shape into the uniform case model."""
    if isinstance(doc.get("products"), list):
        return MultiProductDocument.model_validate(doc).normalize()
    return LegacyFlatSingleDocument.model_validate(doc).normalize()


# ---------- Raise-RMA form ----------

class ProductDraft(Document):
    """A product sub-form on the raise-RMA screen."""

    id: Optional[str] = None
    brand: str = ""
    model_number: str = ""
    serial_number: str = ""
    problems_reported: str = ""
    custom_fields: Dict[str, Any] = {}
    is_saved: bool = False
    is_editing: bool = False


class RaiseRmaRequest(Document):
    contact_id: str
    comments: str = ""
    products: List[ProductDraft] = []


# ---------- Settings ----------

class CompanyInfo(Document):
    name: str = "Your Company"
    email: str = "info@yourcompany.com"
    phone: str = "+1 (555) 123-4567"
    address: str = "123 Business Street, City, Country"
    website: str = ""
    logo: str = "/generic-company-logo.png"


class Settings(Document):
    id: Optional[str] = None
    company_info: CompanyInfo = Field(default_factory=CompanyInfo)
    email_notifications: bool = True
    sms_notifications: bool = False
    require_otp: bool = True
    auto_assign: bool = False
    dark_mode: bool = False


DEFAULT_SETTINGS = Settings()


# ---------- Users ----------

class User(Document):
    id: Optional[str] = None
    name: str
    email: EmailStr
    role: Literal["Admin", "Staff"] = "Staff"
    password_hash: str
    is_active: bool = True
