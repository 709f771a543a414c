"""
Tests for the postal-code lookup.
"""

import httpx
import pytest

from estampa_fina.cep import PostalCodeError, lookup_postal_code, normalize_postal_code

VIACEP_OK = {
    "cep": "01001-000",
    "logradouro": "Praça da Sé",
    "bairro": "Sé",
    "localidade": "São Paulo",
    "uf": "SP",
}


def mock_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestNormalize:
    def test_strips_punctuation(self):
        assert normalize_postal_code("01001-000") == "01001000"

    @pytest.mark.parametrize("code", ["", "1234567", "123456789", "abcdefgh"])
    def test_rejects_other_lengths(self, code):
        with pytest.raises(PostalCodeError):
            normalize_postal_code(code)


class TestLookup:
    def test_success(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json=VIACEP_OK)

        result = lookup_postal_code("01001-000", client=mock_client(handler))
        assert seen == ["https://viacep.com.br/ws/01001000/json/"]
        assert result == {
            "street": "Praça da Sé",
            "neighborhood": "Sé",
            "city": "São Paulo",
            "state": "SP",
            "postal_code": "01001000",
        }

    def test_error_flag(self):
        client = mock_client(lambda request: httpx.Response(200, json={"erro": True}))
        with pytest.raises(PostalCodeError) as exc:
            lookup_postal_code("99999999", client=client)
        assert exc.value.message == "CEP não encontrado."

    def test_http_error(self):
        client = mock_client(lambda request: httpx.Response(500))
        with pytest.raises(PostalCodeError):
            lookup_postal_code("01001000", client=client)

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        with pytest.raises(PostalCodeError):
            lookup_postal_code("01001000", client=mock_client(handler))

    def test_invalid_code_makes_no_request(self):
        def handler(request):
            raise AssertionError("should not be called")

        with pytest.raises(PostalCodeError):
            lookup_postal_code("123", client=mock_client(handler))
