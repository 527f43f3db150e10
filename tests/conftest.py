import pytest

from webhook_tools.certs.authority import new_certificate_authority

# Small keys keep the suite fast; the size itself is covered in test_keys.py
TEST_KEY_BITS = 1024


@pytest.fixture(scope="module")
def ca():
    return new_certificate_authority("test-authority", key_bits=TEST_KEY_BITS)
