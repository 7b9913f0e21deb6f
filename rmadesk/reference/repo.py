"""
Reference data: contacts, brands, service centres, custom field definitions
and the settings document.

These are plain CRUD collections. The only rules are the required-field
checks ("Company name is required" ...) done before the store is called, and
unique names for custom field definitions.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from rmadesk.errors import ValidationError
from rmadesk.observability.structured_logger import app_logger
from rmadesk.schemas import (
    DEFAULT_SETTINGS,
    Brand,
    Contact,
    ServiceCentre,
    Settings,
    custom_field_adapter,
    load,
)
from rmadesk.store import DocumentStore, utc_now


def require(data: Dict[str, Any], fields: Sequence[Tuple[str, str]]):
    """Raise ``<label> is required`` for the first missing or blank field."""
    for key, label in fields:
        value = data.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{label} is required")


class ReferenceRepo:
    """CRUD over one reference collection, validated with ``schema``."""

    collection_name = ""
    schema: Any = None
    required: Sequence[Tuple[str, str]] = ()

    def __init__(self, store: DocumentStore):
        self.collection = store.collection(self.collection_name)

    def list(self) -> List[Any]:
        return [load(self.schema, doc) for doc in self.collection.list()]

    def get(self, doc_id: str):
        return load(self.schema, self.collection.get(doc_id))

    def create(self, data: Dict[str, Any]):
        require(data, self.required)
        record = load(self.schema, self._prepare_create(data))
        self._check_unique(record)
        doc_id = self.collection.create(record.to_document())
        app_logger.info(f"Created {self.collection_name} record", collection=self.collection_name, id=doc_id)
        return self.get(doc_id)

    def update(self, doc_id: str, partial: Dict[str, Any]):
        current = self.collection.get(doc_id)
        merged = {**current, **partial}
        require(merged, self.required)
        record = load(self.schema, merged)
        self._check_unique(record, exclude_id=doc_id)
        self.collection.update(doc_id, record.to_document())
        app_logger.info(f"Updated {self.collection_name} record", collection=self.collection_name, id=doc_id)
        return self.get(doc_id)

    def delete(self, doc_id: str) -> bool:
        deleted = self.collection.delete(doc_id)
        app_logger.info(f"Deleted {self.collection_name} record", collection=self.collection_name, id=doc_id,
                        deleted=deleted)
        return deleted

    def _prepare_create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return data

    def _check_unique(self, record, exclude_id: Optional[str] = None):
        pass


class ContactRepo(ReferenceRepo):
    collection_name = "contacts"
    schema = Contact
    required = (("company", "Company name"), ("email", "Email"), ("phone", "Phone"))
    import_required = (("name", "Name"), ("email", "Email"), ("phone", "Phone"))

    def import_rows(self, rows: List[Dict[str, Any]]) -> List[str]:
        """
        Bulk-create contacts from spreadsheet rows.

        Column names are matched case-insensitively (``Name`` or ``name``).
        Every row is validated before anything is written, and errors carry
        the 1-based row number. A row without a company uses the contact name.
        """
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise ValidationError("rows must be a list of contact objects")
        if not rows:
            raise ValidationError("The file contains no data")

        records = []
        for number, row in enumerate(rows, start=1):
            cells = {str(k).strip().lower(): v for k, v in row.items()}
            data = {key: str(cells[key]).strip() for key in ("name", "email", "phone", "company", "address")
                    if cells.get(key) is not None}
            if not data.get("company"):
                data["company"] = data.get("name")
            try:
                require(data, self.import_required)
                records.append(load(Contact, data))
            except ValidationError as e:
                raise ValidationError(f"Row {number}: {e}")

        ids = self.collection.insert_many([record.to_document() for record in records])
        app_logger.info("Imported contacts", collection=self.collection_name, count=len(ids))
        return ids


class BrandRepo(ReferenceRepo):
    collection_name = "brands"
    schema = Brand
    required = (("name", "Brand name"),)


class ServiceCentreRepo(ReferenceRepo):
    collection_name = "serviceCentres"
    schema = ServiceCentre
    required = (("name", "Service centre name"),)

    def _prepare_create(self, data):
        return {**data, "createdAt": data.get("createdAt") or utc_now()}


class CustomFieldRepo(ReferenceRepo):
    collection_name = "customFields"
    schema = custom_field_adapter
    required = (("name", "Field name"), ("type", "Field type"))

    def _check_unique(self, record, exclude_id=None):
        for doc in self.collection.list():
            if doc.get("name") == record.name and doc["id"] != exclude_id:
                raise ValidationError(f"A custom field named {record.name!r} already exists")


class SettingsRepo:
    """
    The single settings document.

    ``fetch`` is called on every request that needs settings; missing keys
    fall back to ``default`` and nothing is cached between calls.
    """

    collection_name = "settings"
    document_id = "global"

    def __init__(self, store: DocumentStore, default: Settings = DEFAULT_SETTINGS):
        self.collection = store.collection(self.collection_name)
        self.default = default

    def _current(self) -> Optional[Dict[str, Any]]:
        docs = self.collection.list()
        return docs[0] if docs else None

    def fetch(self) -> Settings:
        doc = self._current()
        base = self.default.to_document()
        if not doc:
            return load(Settings, base)
        company = {**base.get("companyInfo", {}), **(doc.get("companyInfo") or {})}
        return load(Settings, {**base, **doc, "companyInfo": company})

    def save(self, partial: Dict[str, Any]) -> Settings:
        current = self.fetch().to_document()
        if "companyInfo" in partial:
            partial = {**partial, "companyInfo": {**current["companyInfo"], **(partial["companyInfo"] or {})}}
        settings = load(Settings, {**current, **partial})
        doc = self._current()
        if doc:
            self.collection.update(doc["id"], settings.to_document())
        else:
            self.collection.create(settings.to_document(), doc_id=self.document_id)
        app_logger.info("Settings saved", require_otp=settings.require_otp,
                        email_notifications=settings.email_notifications)
        return self.fetch()
