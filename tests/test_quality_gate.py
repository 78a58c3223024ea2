from __future__ import annotations

from typing import Any

import pytest

from prodscope.core.config.models import QualityConfig
from prodscope.core.errors import ValidationError
from prodscope.core.quality import QualityGate


def _record(**overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "name": "Linen Shirt",
        "price": 49.0,
        "images": ["https://cdn.shop.example/img/linen-1.jpg", "https://cdn.shop.example/img/linen-2.jpg"],
        "brand": "Acme",
        "description": "A breathable linen shirt for warm days.",
    }
    record.update(overrides)
    return record


@pytest.fixture
def gate() -> QualityGate:
    return QualityGate()


def test_valid_record_passes_and_is_normalized(gate: QualityGate) -> None:
    result = gate.validate(_record(name="  Linen   Shirt ", price="49.00", currency="usd"))

    assert result.valid
    assert result.errors == []
    assert result.product is not None
    assert result.product.name == "Linen Shirt"
    assert result.product.price == 49.0
    assert result.product.currency == "USD"
    assert result.product.availability == "in_stock"
    assert result.product.validation_version == "1.0.0"
    assert result.product.validated_at


def test_currency_defaults_to_usd(gate: QualityGate) -> None:
    result = gate.validate(_record())
    assert result.product is not None
    assert result.product.currency == "USD"


@pytest.mark.parametrize(("raw", "expected"), [("$", "USD"), ("€", "EUR"), ("£", "GBP"), ("thb", "THB")])
def test_currency_symbols_map_to_iso_codes(gate: QualityGate, raw: str, expected: str) -> None:
    result = gate.validate(_record(currency=raw))

    assert result.valid
    assert result.product.currency == expected
    assert not any(issue.field == "currency" for issue in result.warnings)


def test_unrecognized_currency_falls_back_with_warning(gate: QualityGate) -> None:
    result = gate.validate(_record(currency="Dollars"))

    assert result.valid
    assert result.product.currency == "USD"
    assert any(issue.field == "currency" and "Dollars" in issue.message for issue in result.warnings)


def test_sale_price_not_below_price_is_rejected(gate: QualityGate) -> None:
    result = gate.validate(_record(price=20, sale_price=25))

    assert not result.valid
    assert [issue.field for issue in result.errors] == ["sale_price"]
    assert result.partial is not None
    assert result.partial["price"] == 20.0


def test_empty_images_is_rejected(gate: QualityGate) -> None:
    result = gate.validate(_record(images=[]))

    assert not result.valid
    assert any(issue.field == "images" for issue in result.errors)


def test_zero_price_rejected_by_default(gate: QualityGate) -> None:
    result = gate.validate(_record(price=0))
    assert not result.valid
    assert result.errors[0].field == "price"


def test_zero_price_allowed_by_config() -> None:
    gate = QualityGate(QualityConfig(allow_zero_price=True))
    assert gate.validate(_record(price=0)).valid


def test_negative_price_always_rejected() -> None:
    gate = QualityGate(QualityConfig(allow_zero_price=True))
    assert not gate.validate(_record(price=-5)).valid


def test_name_equal_to_brand_is_rejected(gate: QualityGate) -> None:
    result = gate.validate(_record(name="ACME", brand="acme"))
    assert not result.valid
    assert result.errors[0].field == "name"


@pytest.mark.parametrize("name", ["Lorem ipsum dolor", "Test Product", "sample", "Placeholder tee"])
def test_placeholder_names_are_rejected(gate: QualityGate, name: str) -> None:
    assert not gate.validate(_record(name=name)).valid


def test_real_names_with_test_word_pass(gate: QualityGate) -> None:
    assert gate.validate(_record(name="Test Shirt")).valid


def test_suspiciously_high_price_is_rejected(gate: QualityGate) -> None:
    result = gate.validate(_record(price=2_000_000))
    assert not result.valid
    assert result.errors[0].field == "price"


def test_placeholder_only_images_are_rejected(gate: QualityGate) -> None:
    result = gate.validate(_record(images=["https://shop.example/assets/logo.png"]))
    assert not result.valid
    assert result.errors[0].field == "images"


def test_warnings_do_not_block(gate: QualityGate) -> None:
    result = gate.validate(
        _record(
            name="Summer Sale Dress",
            brand=None,
            description=None,
            images=["https://cdn.shop.example/img/dress-1.jpg"],
        )
    )

    assert result.valid
    warned = {issue.field for issue in result.warnings}
    assert {"brand", "description", "images", "sale_price"} <= warned


def test_validation_is_idempotent(gate: QualityGate) -> None:
    record = _record(name=" Linen Shirt ", price="49", currency="eur", availability="Sold out")

    direct = gate.validate(record)
    via_normalize = gate.validate(gate.normalize(record))

    assert direct == via_normalize
    assert direct.product is not None
    assert direct.product.availability == "out_of_stock"


def test_normalize_is_stable(gate: QualityGate) -> None:
    once = gate.normalize(_record(price="1,299.00"))
    twice = gate.normalize(once)

    once.pop("validated_at")
    twice.pop("validated_at")
    assert once == twice
    assert once["price"] == 1299.0


def test_rescue_fills_name_price_and_images_from_candidates(gate: QualityGate) -> None:
    merged = {"brand": "Acme"}
    candidates = [
        {"title": "Wool Coat", "currentPrice": "$120.00"},
        {"gallery": ["https://cdn.shop.example/img/coat-front.jpg"]},
    ]

    result = gate.validate(merged, candidates)

    assert result.valid
    assert result.recovered
    assert result.product is not None
    assert result.product.name == "Wool Coat"
    assert result.product.price == 120.0
    assert result.product.images == ["https://cdn.shop.example/img/coat-front.jpg"]
    assert any(issue.field == "product" for issue in result.warnings)


def test_rescue_does_not_fix_business_rule_failures(gate: QualityGate) -> None:
    result = gate.validate(_record(price=20, sale_price=25), [{"price": 30}])
    assert not result.valid
    assert not result.recovered


def test_metrics_track_outcomes(gate: QualityGate) -> None:
    gate.validate(_record())
    gate.validate(_record(images=[]))

    metrics = gate.metrics()
    assert metrics["total"] == 2
    assert metrics["passed"] == 1
    assert metrics["failed"] == 1
    assert metrics["failure_reasons"] == {"schema_validation": 1}


def test_result_serializes_without_empty_sections(gate: QualityGate) -> None:
    data = gate.validate(_record()).to_dict()
    assert data["valid"] is True
    assert data["product"]["name"] == "Linen Shirt"
    assert "partial" not in data


def test_raise_for_invalid(gate: QualityGate) -> None:
    assert gate.validate(_record()).raise_for_invalid().name == "Linen Shirt"

    result = gate.validate(_record(price=20, sale_price=25))
    with pytest.raises(ValidationError, match="sale_price") as excinfo:
        result.raise_for_invalid()
    assert excinfo.value.result is result
    assert [error["field"] for error in excinfo.value.errors] == ["sale_price"]
