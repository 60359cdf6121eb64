"""
Domain Models - Sales Visit Submission
======================================

A submission is built by the field form, posted once and never updated.
The server only reads it to render one notification.

Field aliases are the names the form posts (``namaOutlet``, ``hargaJual``,
...); snake_case names are accepted too.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

NOT_COLLECTED = "TIDAK TERTAGIH"
MAPS_URL = "https://www.google.com/maps?q={latitude},{longitude}"


def format_local_timestamp(moment: datetime) -> str:
    """Indonesian locale date-time, e.g. ``19/10/2026, 14.05.03``."""
    return f"{moment.day}/{moment.month}/{moment.year}, {moment:%H.%M.%S}"


class ProductLine(BaseModel):
    """Price and quantity of one selected product."""

    model_config = ConfigDict(populate_by_name=True)

    unit_price: int = Field(alias="hargaJual", gt=0)
    quantity: int = Field(alias="jumlah", gt=0)

    @field_validator("unit_price", "quantity", mode="before")
    @classmethod
    def _digits_only(cls, value: Any) -> Any:
        # The form posts "Rp 10.000"-style strings
        if isinstance(value, str):
            return re.sub(r"[^\d]", "", value) or value
        return value

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


class GeoStamp(BaseModel):
    """Where and when a photo was taken or the form was submitted."""

    url: str
    timestamp: str

    @model_validator(mode="before")
    @classmethod
    def _from_coordinates(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "url" in data:
            return data
        if "latitude" not in data or "longitude" not in data:
            return data

        stamp = data.get("timestamp")
        if isinstance(stamp, (int, float)):
            stamp = format_local_timestamp(datetime.fromtimestamp(stamp / 1000))
        return {
            "url": MAPS_URL.format(latitude=data["latitude"], longitude=data["longitude"]),
            "timestamp": stamp or "-",
        }


class Submission(BaseModel):
    """One outlet visit record posted by a sales rep."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    sales_id: str = Field(alias="sales", min_length=1)
    outlet_id: str = Field(alias="namaOutlet", min_length=1)
    outlet_type: Optional[str] = Field(default=None, alias="tipeOutlet")
    address: str = Field(alias="alamat", min_length=1)
    order_type: Optional[str] = Field(default=None, alias="tipePesanan")
    selected_products: Dict[str, ProductLine] = Field(default_factory=dict, alias="selectedProducts")
    tax_type: Optional[str] = Field(default=None, alias="tipePajak")
    customer_category: Optional[str] = Field(default=None, alias="kategoriCustomer")
    bonus: Optional[str] = None
    no_order_reason: Optional[str] = Field(default=None, alias="alasanTidakPesan")
    billing_status: Optional[str] = Field(default=None, alias="penagihan")
    billing_exception_reason: Optional[str] = Field(default=None, alias="alasanTidakTertagih")
    images: List[str] = Field(default_factory=list)
    image_locations: List[Optional[GeoStamp]] = Field(default_factory=list, alias="imagesLocations")
    submit_location: Optional[GeoStamp] = Field(default=None, alias="submitLocation")
    timestamp: Optional[str] = None

    @property
    def is_not_collected(self) -> bool:
        return self.billing_status == NOT_COLLECTED

    @property
    def total_amount(self) -> int:
        return sum(line.subtotal for line in self.selected_products.values())


@dataclass
class EnrichedSubmission:
    """Submission plus the human-readable names looked up on the server."""

    submission: Submission
    sales_name: Optional[str] = None
    outlet_name: Optional[str] = None
    product_names: Dict[str, str] = field(default_factory=dict)
