# Sales Notifier Tests - Submission Model & Template Renderer
#
# Tests for:
# - Form field aliases and validation
# - Token substitution (single pass, unknown tokens kept)
# - Money, date and product list formatting
# - Location lines

import re
from datetime import datetime

import pytest
from pydantic import ValidationError

from sales_notifier.domain import DEFAULT_NOTIFICATION_TEMPLATE, TOKENS, Submission, render
from sales_notifier.domain.models import EnrichedSubmission
from sales_notifier.domain.template_renderer import format_rupiah, token_values

FIXED_NOW = datetime(2026, 3, 5, 9, 30)

FULL_FORM = {
    "sales": "s1",
    "namaOutlet": "outlet1",
    "tipeOutlet": "Retail",
    "alamat": "Jl. Merdeka 1",
    "tipePesanan": "Reguler",
    "selectedProducts": {
        "p1": {"hargaJual": 10000, "jumlah": 2},
        "p2": {"hargaJual": 5000, "jumlah": 1},
    },
    "tipePajak": "PPN",
    "kategoriCustomer": "Baru",
    "bonus": "1 dus",
    "penagihan": "TIDAK TERTAGIH",
    "alasanTidakTertagih": "Toko tutup",
    "images": [],
    "imagesLocations": [
        {"latitude": -6.2, "longitude": 106.8, "timestamp": 1760000000000},
        None,
    ],
    "submitLocation": {"url": "https://maps.example/submit", "timestamp": "1/3/2026, 10.00.00"},
}


def enriched(form=None, **names) -> EnrichedSubmission:
    names.setdefault("sales_name", "Budi")
    names.setdefault("outlet_name", "Toko Sumber Rejeki")
    names.setdefault("product_names", {"p1": "Kopi Susu", "p2": "Teh Manis"})
    return EnrichedSubmission(submission=Submission.model_validate(form or FULL_FORM), **names)


class TestSubmissionModel:
    """Parsing of the form payload."""

    def test_form_aliases_are_read(self):
        submission = Submission.model_validate(FULL_FORM)
        assert submission.sales_id == "s1"
        assert submission.outlet_id == "outlet1"
        assert submission.address == "Jl. Merdeka 1"
        assert list(submission.selected_products) == ["p1", "p2"]
        assert submission.is_not_collected

    def test_snake_case_names_are_accepted(self):
        submission = Submission(sales_id="s1", outlet_id="o1", address="Jl. A")
        assert submission.selected_products == {}
        assert submission.total_amount == 0

    @pytest.mark.parametrize("missing", ["sales", "namaOutlet", "alamat"])
    def test_required_fields(self, missing):
        form = {k: v for k, v in FULL_FORM.items() if k != missing}
        with pytest.raises(ValidationError):
            Submission.model_validate(form)

    def test_blank_address_is_rejected(self):
        with pytest.raises(ValidationError):
            Submission.model_validate({**FULL_FORM, "alamat": "   "})

    def test_formatted_price_strings_are_parsed(self):
        form = {**FULL_FORM, "selectedProducts": {"p1": {"hargaJual": "Rp 12.500", "jumlah": "3"}}}
        line = Submission.model_validate(form).selected_products["p1"]
        assert (line.unit_price, line.quantity, line.subtotal) == (12500, 3, 37500)

    def test_zero_quantity_is_rejected(self):
        form = {**FULL_FORM, "selectedProducts": {"p1": {"hargaJual": 1000, "jumlah": 0}}}
        with pytest.raises(ValidationError):
            Submission.model_validate(form)

    def test_coordinates_become_map_links(self):
        location = Submission.model_validate(FULL_FORM).image_locations[0]
        assert location.url == "https://www.google.com/maps?q=-6.2,106.8"
        assert location.timestamp.count("/") == 2


class TestRender:
    """Template rendering."""

    def test_default_template_leaves_no_tokens(self):
        text = render(DEFAULT_NOTIFICATION_TEMPLATE, enriched(), FIXED_NOW)
        assert re.search(r"\{\w+\}", text) is None

    def test_every_token_is_replaced(self):
        template = " | ".join("{%s}" % token for token in TOKENS)
        text = render(template, enriched(), FIXED_NOW)
        assert "{" not in text and "}" not in text

    def test_render_is_deterministic_with_fixed_clock(self):
        first = render(DEFAULT_NOTIFICATION_TEMPLATE, enriched(), FIXED_NOW)
        second = render(DEFAULT_NOTIFICATION_TEMPLATE, enriched(), FIXED_NOW)
        assert first == second
        assert "Date: 5/3/2026" in first

    def test_total_and_product_lines(self):
        values = token_values(enriched(), FIXED_NOW)
        assert values["total_amount"] == "Rp 25.000"
        assert values["products_list"].splitlines() == [
            "- Kopi Susu: 2 x Rp 10.000",
            "- Teh Manis: 1 x Rp 5.000",
        ]

    def test_empty_selection(self):
        values = token_values(enriched({**FULL_FORM, "selectedProducts": {}}), FIXED_NOW)
        assert values["total_amount"] == "Rp 0"
        assert values["products_list"] == "No products"

    def test_unknown_product_name_falls_back_to_id(self):
        form = {**FULL_FORM, "selectedProducts": {"kopi_susu": {"hargaJual": 1000, "jumlah": 1}}}
        values = token_values(enriched(form, product_names={}), FIXED_NOW)
        assert values["products_list"] == "- Kopi Susu: 1 x Rp 1.000"

    def test_names_fall_back_to_ids(self):
        text = render("{sales_name}/{outlet_name}", enriched(sales_name=None, outlet_name=None), FIXED_NOW)
        assert text == "s1/outlet1"

    def test_unknown_tokens_are_kept(self):
        assert render("{nope} {date}", enriched(), FIXED_NOW) == "{nope} 5/3/2026"

    def test_submitted_text_is_not_substituted_again(self):
        form = {**FULL_FORM, "alamat": "{date}"}
        assert render("{address}", enriched(form), FIXED_NOW) == "{date}"

    def test_reason_only_when_not_collected(self):
        form = {**FULL_FORM, "penagihan": "TERTAGIH"}
        assert render("{alasan_tidak_tertagih}", enriched(form), FIXED_NOW) == "-"
        assert render("{alasan_tidak_tertagih}", enriched(), FIXED_NOW) == "Toko tutup"

    def test_location_lines(self):
        values = token_values(enriched(), FIXED_NOW)
        lines = values["images_locations"].splitlines()
        assert lines[0] == "Image 1: https://www.google.com/maps?q=-6.2,106.8"
        assert lines[1].startswith("Taken at: ")
        assert lines[2] == "Image 2: Location not available"
        assert values["submit_location"] == (
            "https://maps.example/submit\nSubmitted at: 1/3/2026, 10.00.00"
        )

    def test_missing_locations(self):
        form = {**FULL_FORM, "imagesLocations": [], "submitLocation": None}
        values = token_values(enriched(form), FIXED_NOW)
        assert values["images_locations"] == "No image locations available"
        assert values["submit_location"] == "Submit location not available"


def test_rupiah_grouping():
    assert format_rupiah(0) == "Rp 0"
    assert format_rupiah(1234567) == "Rp 1.234.567"
