"""
Doctor Approval Gate Tests

Usage:
    python -m pytest tests/test_approval.py -v
"""

import sys
from pathlib import Path

import jwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.security_settings import SecuritySettings
from services.auth.approval import check_approved_doctor
from services.auth.token_auth import issue_token
from services.security.errors import AuthzForbidden
from services.security.models import Claims
from services.security.pipeline import SecurityPipeline

KEY = "0123456789abcdef0123456789abcdef"
SECRET = "approval-test-signing-secret-0123456789ab"


class TestCheckApprovedDoctor:
    """Decision table of the gate."""

    def test_approved_doctor_passes(self):
        claims = Claims(id=9, role="doctor", is_approved=True)
        assert check_approved_doctor(claims) is claims

    @pytest.mark.parametrize("approved", [False, 0, None])
    def test_unapproved_doctor(self, approved):
        with pytest.raises(AuthzForbidden) as exc_info:
            check_approved_doctor(Claims(id=9, role="doctor", is_approved=approved))

        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Access denied: Doctor not approved yet"

    def test_truthy_integer_flag_counts_as_approved(self):
        claims = Claims(id=9, role="doctor", is_approved=1)
        assert check_approved_doctor(claims).id == 9

    def test_flag_checked_for_truthiness_not_parsed(self):
        # A non-empty string is truthy whatever it spells
        claims = Claims(id=9, role="doctor", is_approved="false")
        assert check_approved_doctor(claims).is_approved == "false"

    @pytest.mark.parametrize("role", ["user", "admin", "Doctor", None])
    def test_not_a_doctor(self, role):
        with pytest.raises(AuthzForbidden) as exc_info:
            check_approved_doctor(Claims(id=1, role=role, is_approved=True))

        assert exc_info.value.message == "Access denied: Not a doctor"

    def test_missing_claims_are_not_a_doctor(self):
        with pytest.raises(AuthzForbidden) as exc_info:
            check_approved_doctor(None)

        assert exc_info.value.message == "Access denied: Not a doctor"


class TestApprovedDoctorRoute:
    """Gate chained after the token verifier on a plain route."""

    @pytest.fixture
    def settings(self):
        return SecuritySettings(encryption_key=KEY, jwt_secret=SECRET)

    @pytest.fixture
    def client(self, settings):
        pipeline = SecurityPipeline(settings)
        app = FastAPI()
        pipeline.install(app)

        @app.get("/doctor-only")
        async def doctor_only(claims: Claims = Depends(pipeline.approved_doctor())):
            return {"success": True, "doctor_id": claims.id}

        return TestClient(app)

    def test_no_token(self, client):
        response = client.get("/doctor-only")
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "No token provided"}

    def test_patient_denied(self, client, settings):
        token = issue_token(settings, 3, "user")

        response = client.get("/doctor-only", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403
        assert response.json() == {"success": False, "message": "Access denied: Not a doctor"}

    def test_unapproved_doctor_denied(self, client, settings):
        token = issue_token(settings, 4, "doctor", is_approved=False)

        response = client.get("/doctor-only", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403
        assert response.json() == {"success": False, "message": "Access denied: Doctor not approved yet"}

    def test_approved_doctor_allowed(self, client, settings):
        token = issue_token(settings, 5, "doctor", is_approved=True)

        response = client.get("/doctor-only", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "doctor_id": 5}

    def test_string_flag_is_not_coerced(self, client):
        token = jwt.encode({"id": 6, "role": "doctor", "is_approved": "false"}, SECRET, algorithm="HS256")

        response = client.get("/doctor-only", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "doctor_id": 6}
