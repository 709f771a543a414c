"""
Tests for record parsing and form validation.
"""

import pytest
from pydantic import ValidationError

from estampa_fina.schemas import Client, Order, Product, ProductForm, ClientForm


class TestRecords:
    def test_missing_and_null_fields_default(self):
        p = Product.model_validate({"id": "p1", "name": None, "salePrice": None})
        assert p.name == ""
        assert p.sale_price == 0
        assert p.expiry_date is None

    def test_nested_address_defaults(self):
        c = Client.model_validate({"id": "c1", "name": "Ana", "address": None})
        assert c.address.city == ""

    def test_order_defaults(self):
        o = Order.model_validate({"id": "o1"})
        assert o.items == []
        assert o.status == "Awaiting Payment"
        assert o.payment_details == {"installments": 1}

    def test_to_doc_uses_camel_case(self):
        doc = Product(id="p1", name="Camiseta", current_stock=3).to_doc()
        assert "id" not in doc
        assert doc["currentStock"] == 3
        assert doc["name"] == "Camiseta"


class TestForms:
    def test_product_form(self):
        doc = ProductForm(name="Camiseta", sale_price=49.9, expiry_date="2024-12-31").to_doc()
        assert doc["salePrice"] == 49.9
        assert doc["expiryDate"] == "2024-12-31T00:00:00+00:00"
        assert "imageUrl" not in doc

    def test_product_form_blank_date(self):
        assert ProductForm(name="Camiseta", expiry_date="").to_doc()["expiryDate"] is None

    @pytest.mark.parametrize("field", ["current_stock", "cost_price", "sale_price"])
    def test_negative_numbers_rejected(self, field):
        with pytest.raises(ValidationError):
            ProductForm(name="Camiseta", **{field: -1})

    def test_name_required(self):
        with pytest.raises(ValidationError):
            ProductForm(name="")

    def test_client_form(self):
        doc = ClientForm(name="Ana", address={"city": "Recife", "postal_code": "50000000"}).to_doc()
        assert doc["address"]["postalCode"] == "50000000"
        assert "createdAt" not in doc
