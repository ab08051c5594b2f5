"""
Tests para el módulo de Empresas y los validadores de RUT
"""
import pytest
from pydantic import ValidationError

from pos_boletas.common.validators import (
    calculate_rut_dv, clean_rut, format_chile_rut, normalize_rut, validate_chile_rut
)
from pos_boletas.modules.company.schemas import CompanyCreate


# ===== TESTS DE VALIDACIONES RUT =====

class TestRutValidation:
    """Tests para validación de RUT chileno"""

    def test_calculate_rut_dv(self):
        assert calculate_rut_dv("76543210") == "3"
        assert calculate_rut_dv("21289176") == "2"
        assert calculate_rut_dv("11111111") == "1"
        assert calculate_rut_dv("76354771") == "K"

    def test_validate_chile_rut(self):
        assert validate_chile_rut("76.354.771-K") == True
        assert validate_chile_rut("76354771-k") == True
        assert validate_chile_rut("765432103") == True
        assert validate_chile_rut("76543210-4") == False
        assert validate_chile_rut("abc") == False
        assert validate_chile_rut("") == False

    def test_clean_and_format(self):
        assert clean_rut(" 76.354.771-k ") == "76354771K"
        assert format_chile_rut("76.354.771-k") == "76354771-K"

    def test_normalize_rut(self):
        assert normalize_rut("076.354.771-k") == "76354771-K"
        assert normalize_rut("76354771K") == "76354771-K"
        assert normalize_rut(None) is None
        assert normalize_rut("0") is None


class TestCompanySchema:

    def test_rut_is_stored_formatted(self):
        company = CompanyCreate(rut="76.543.210-3", business_name="Minimarket Los Aromos Ltda")
        assert company.rut == "76543210-3"

    def test_invalid_rut_is_rejected(self):
        with pytest.raises(ValidationError):
            CompanyCreate(rut="76.543.210-9", business_name="Minimarket Los Aromos Ltda")


# ===== TESTS DE API =====

class TestCompanyAPI:
    """Tests de los endpoints de empresas"""

    def test_create_and_get_company(self, client):
        response = client.post("/companies/", json={
            "rut": "21.289.176-2",
            "business_name": "Panadería La Espiga SpA",
            "activity": "Elaboración de pan",
            "commune": "Temuco",
        })

        assert response.status_code == 201
        body = response.json()
        assert body["rut"] == "21289176-2"
        assert body["is_active"] is True

        fetched = client.get(f"/companies/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["business_name"] == "Panadería La Espiga SpA"

        listing = client.get("/companies/")
        assert [c["id"] for c in listing.json()] == [body["id"]]

    def test_duplicate_rut(self, client, company):
        response = client.post("/companies/", json={"rut": "76354771-K", "business_name": "Otra razón social"})
        assert response.status_code == 400

    def test_invalid_rut(self, client):
        response = client.post("/companies/", json={"rut": "11111111-2", "business_name": "Sin DV"})
        assert response.status_code == 422

    def test_company_not_found(self, client):
        assert client.get("/companies/999").status_code == 404
