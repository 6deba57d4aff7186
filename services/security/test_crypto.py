#!/usr/bin/env python3
"""
Secure Pipeline Crypto Engine - Integration Test

This script runs the full client -> server -> client cycle: a client holding
the shared key encrypts a request, the API decrypts, authenticates and
answers, and the client opens the encrypted response.

Usage:
    python -m services.security.test_crypto
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from fastapi.testclient import TestClient

from config.security_settings import SecuritySettings
from services.auth.token_auth import issue_token
from services.security.crypto_engine import EnvelopeCipher

TEST_KEY = "0123456789abcdef0123456789abcdef"
TEST_SECRET = "crypto-cycle-test-signing-secret-0123456789"


def test_full_cycle():
    """Test the complete encrypt -> verify -> decrypt cycle against the API."""
    from main import create_app

    print("=" * 60)
    print("Secure Pipeline - Full Cycle Test")
    print("=" * 60)

    settings = SecuritySettings(encryption_key=TEST_KEY, jwt_secret=TEST_SECRET)
    client = TestClient(create_app(settings))
    client_cipher = EnvelopeCipher(TEST_KEY.encode("utf-8"))

    # =========================================================================
    # Step 1: Client obtains a credential
    # =========================================================================
    print("\n[1] Issuing credential for an approved doctor...")

    token = issue_token(settings, 501, "doctor", is_approved=True, is_phone_verified=True)
    headers = {"Authorization": f"Bearer {token}"}
    print(f"    Token length: {len(token)} chars")

    # =========================================================================
    # Step 2: Client encrypts a request body
    # =========================================================================
    print("\n[2] Client encrypting request body...")

    test_payload = {
        "prescription": [
            {"name": "Amoxicillin", "dose_mg": 500, "times_per_day": 3},
            {"name": "Paracetamol", "dose_mg": 500, "times_per_day": 4},
        ],
        "note": "飯後服用",
    }
    envelope = client_cipher.encrypt_json(test_payload)
    iv_hex, cipher_hex = envelope.split(":")
    print(f"    IV: {iv_hex}")
    print(f"    Ciphertext length: {len(cipher_hex)} hex chars")

    # =========================================================================
    # Step 3: Server decrypts, authenticates and answers encrypted
    # =========================================================================
    print("\n[3] Sending encrypted request...")

    response = client.post("/api/session/echo", json={"payload": envelope}, headers=headers)
    assert response.status_code == 200, f"Unexpected status {response.status_code}"

    body = response.json()
    assert list(body) == ["payload"], f"Response not enveloped: {body}"
    print("    ✓ Response arrived as an envelope")

    # =========================================================================
    # Step 4: Client opens the response
    # =========================================================================
    print("\n[4] Client decrypting response...")

    decrypted = client_cipher.decrypt_json(body["payload"])
    assert decrypted["success"] is True
    assert decrypted["encrypted"] is True
    assert decrypted["body"] == test_payload, "Round-tripped body does not match!"
    print("    ✓ Prescription items match!")
    print(f"    ✓ Note: {decrypted['body']['note']}")

    # =========================================================================
    # Step 5: Encrypted query on GET
    # =========================================================================
    print("\n[5] Sending encrypted query...")

    query = {"patient_id": "P-0042", "page": 1}
    response = client.get(
        "/api/session/echo",
        params={"payload": client_cipher.encrypt_json(query)},
        headers=headers,
    )
    decrypted = client_cipher.decrypt_json(response.json()["payload"])
    assert decrypted["query"] == query, f"Query mismatch: {decrypted['query']}"
    print("    ✓ Query decrypted server-side")

    # =========================================================================
    # Step 6: Tampered envelope is rejected
    # =========================================================================
    print("\n[6] Testing tamper detection...")

    tampered = f"{iv_hex}:{cipher_hex[:-10]}0000000000"
    response = client.post("/api/session/echo", json={"payload": tampered}, headers=headers)
    assert response.status_code == 400, f"Tampered envelope accepted with {response.status_code}"

    rejected = client_cipher.decrypt_json(response.json()["payload"])
    assert rejected == {"success": False, "error": "Invalid encrypted payload"}
    print("    ✓ Tampered envelope correctly rejected!")

    # =========================================================================
    # Step 7: Approval gate
    # =========================================================================
    print("\n[7] Testing approval gate...")

    pending = issue_token(settings, 502, "doctor", is_approved=False)
    response = client.get("/api/session/doctor", headers={"Authorization": f"Bearer {pending}"})
    assert response.status_code == 403
    denied = client_cipher.decrypt_json(response.json()["payload"])
    assert denied["message"] == "Access denied: Doctor not approved yet"
    print("    ✓ Unapproved doctor blocked")

    response = client.get("/api/session/doctor", headers=headers)
    assert client_cipher.decrypt_json(response.json()["payload"])["doctor_id"] == 501
    print("    ✓ Approved doctor allowed")

    print("\n" + "=" * 60)
    print("✓ ALL TESTS PASSED!")
    print("=" * 60)


def test_iv_uniqueness():
    """Two encryptions of the same plaintext never share an IV."""
    print("\n[Bonus] Testing IV uniqueness...")

    cipher = EnvelopeCipher(TEST_KEY.encode("utf-8"))
    ivs = {cipher.encrypt("same message").split(":")[0] for _ in range(100)}

    assert len(ivs) == 100, "IV reused across messages"
    print("    ✓ 100 envelopes, 100 distinct IVs")


def run_tests():
    """Entry point used by tests/run_all_tests.py."""
    test_full_cycle()
    test_iv_uniqueness()


if __name__ == "__main__":
    print("\nSecure Request Pipeline")
    print("Crypto Engine Integration Test\n")

    try:
        run_tests()
        print("\n✅ All security tests passed. System is ready.")
        sys.exit(0)

    except AssertionError as e:
        print(f"\n❌ Test failed: {e}")
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Test failed with error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
