from __future__ import annotations

from prodscope.core.acquire.interceptor import (
    GENERIC_SIGNATURES,
    interpret_responses,
    signature_patterns,
    sniff_payload,
)
from prodscope.core.backends.base import InterceptedResponse


def test_signature_patterns_prefer_origin_specific_entries() -> None:
    patterns = [p.pattern for p in signature_patterns("www2.nordstrom.com")]
    assert patterns == [r"api.*product", r"style.*api", r"price"]


def test_signature_patterns_merge_config_and_hints() -> None:
    patterns = [
        p.pattern
        for p in signature_patterns(
            "shop.example.com",
            extra={"example.com": [r"/catalog/"]},
            hints=[r"/pdp/", r"/catalog/"],
        )
    ]
    assert patterns == [r"/catalog/", r"/pdp/"]


def test_signature_patterns_fall_back_to_generic_and_skip_invalid() -> None:
    assert [p.pattern for p in signature_patterns("unknown.test")] == GENERIC_SIGNATURES
    patterns = signature_patterns("unknown.test", hints=["(unclosed"])
    assert patterns == []


def test_signature_patterns_are_case_insensitive() -> None:
    (pattern,) = signature_patterns("unknown.test", hints=["/API/"])
    assert pattern.search("https://unknown.test/api/v1/item")


def test_sniff_payload_walks_nested_structures() -> None:
    payload = {
        "data": {
            "items": [
                {
                    "productName": "Merino Sweater",
                    "pricing": {"salePrice": {"amount": "89.50"}},
                    "brand": {"name": "Knitworks"},
                    "media": [{"imageUrl": "https://cdn.knit.example/merino-1.jpg"}],
                    "gallery": {"images": ["https://cdn.knit.example/merino-2.png", "not-an-image"]},
                }
            ]
        }
    }
    found = sniff_payload(payload)

    assert found["name"] == "Merino Sweater"
    assert found["price"] == 89.5
    assert found["brand"] == "Knitworks"
    assert found["images"] == [
        "https://cdn.knit.example/merino-1.jpg",
        "https://cdn.knit.example/merino-2.png",
    ]


def test_sniff_payload_rejects_implausible_prices() -> None:
    assert "price" not in sniff_payload({"price": 0})
    assert "price" not in sniff_payload({"price": 5_000_000})
    assert "price" not in sniff_payload({"price": True})
    assert sniff_payload({"price": "n/a", "listPrice": 12})["price"] == 12.0


def test_sniff_payload_respects_depth_bound() -> None:
    payload: dict = {"name": "Shallow Item"}
    node = payload
    for _ in range(15):
        node["child"] = {}
        node = node["child"]
    node["price"] = 10

    assert sniff_payload(payload, max_depth=5) == {"name": "Shallow Item"}


def test_interpret_responses_uses_overrides_then_sniffer() -> None:
    responses = [
        InterceptedResponse(
            url="https://www.uniqlo.com/api/product/123/price",
            status=200,
            data={"result": {"priceGroup": {"salePrice": {"value": 29.9}}, "name": "AIRism Tee"}},
        ),
        InterceptedResponse(
            url="https://www.uniqlo.com/api/product/123/images",
            status=200,
            data={"images": ["https://im.uniqlo.example/airism-1.jpg"]},
        ),
        InterceptedResponse(url="https://www.uniqlo.com/api/broken", status=500, data={"price": 1}),
    ]

    data = interpret_responses(responses, "uniqlo.com")

    assert data.fields == {
        "price": 29.9,
        "name": "AIRism Tee",
        "images": ["https://im.uniqlo.example/airism-1.jpg"],
    }
    assert data.sources == [responses[0].url, responses[1].url]


def test_interpret_responses_graphql_shape() -> None:
    response = InterceptedResponse(
        url="https://shop.example.com/graphql",
        status=200,
        data={
            "data": {
                "product": {
                    "name": "Trail Boot",
                    "price": {"value": "149.00"},
                    "brand": {"name": "Summit"},
                    "images": [{"url": "https://cdn.example.com/boot.jpg"}],
                }
            }
        },
    )
    data = interpret_responses([response], "shop.example.com")

    assert data.fields["name"] == "Trail Boot"
    assert data.fields["price"] == 149.0
    assert data.fields["brand"] == "Summit"
    assert data.fields["images"] == ["https://cdn.example.com/boot.jpg"]


def test_interpret_responses_empty() -> None:
    data = interpret_responses([], "shop.example.com")
    assert not data
    assert data.sources == []
