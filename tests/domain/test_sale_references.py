"""Tests for receipt reference generation (inventory_kernel/domain/references.py)."""

import re
from datetime import datetime, timezone

from inventory_kernel.domain.references import generate_sale_reference, sale_reference_prefix

NOW = datetime(2025, 1, 8, 12, 30, 5, tzinfo=timezone.utc)


class TestSaleReference:
    def test_format(self):
        reference = generate_sale_reference("pos-main", NOW)
        assert re.fullmatch(r"POSMAIN-20250108-123005-[A-Z0-9]{4}", reference)

    def test_default_prefix(self):
        assert generate_sale_reference(None, NOW).startswith("POS-20250108-")
        assert sale_reference_prefix("---") == "POS"

    def test_prefix_keeps_only_alphanumerics(self):
        assert sale_reference_prefix("kiosk_2 / harbour") == "KIOSK2HARBOUR"

    def test_suffix_varies(self):
        references = {generate_sale_reference("pos", NOW) for _ in range(20)}
        assert len(references) > 1

    def test_long_slug_fits_reference_column(self):
        reference = generate_sale_reference("shop-" + "x" * 200, NOW)
        assert len(reference) <= 100
        assert reference.startswith("SHOPXXX")
        assert re.search(r"-20250108-123005-[A-Z0-9]{4}$", reference)
