"""
Postal-code (CEP) lookup used to pre-fill address forms.

The only checks are "8 digits before calling" and "no error flag in the
answer"; the returned address is not validated further.
"""
from __future__ import annotations

import logging
import os
import re
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

CEP_API_URL = os.getenv("CEP_API_URL", "https://viacep.com.br/ws")
CEP_TIMEOUT = float(os.getenv("CEP_TIMEOUT", "5"))


class PostalCodeError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def normalize_postal_code(code: str) -> str:
    digits = re.sub(r"\D", "", code or "")
    if len(digits) != 8:
        raise PostalCodeError("CEP inválido. Informe 8 dígitos.")
    return digits


def lookup_postal_code(code: str, client: Optional[httpx.Client] = None) -> dict:
    digits = normalize_postal_code(code)
    url = f"{CEP_API_URL.rstrip('/')}/{digits}/json/"

    own_client = client is None
    http = client or httpx.Client(timeout=CEP_TIMEOUT)
    try:
        response = http.get(url)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"CEP lookup failed for {digits}: {e}")
        raise PostalCodeError("Não foi possível consultar o CEP.") from e
    finally:
        if own_client:
            http.close()

    if not isinstance(data, dict) or data.get("erro"):
        raise PostalCodeError("CEP não encontrado.")

    return {
        "street": data.get("logradouro") or "",
        "neighborhood": data.get("bairro") or "",
        "city": data.get("localidade") or "",
        "state": data.get("uf") or "",
        "postal_code": digits,
    }
