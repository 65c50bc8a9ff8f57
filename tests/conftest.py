import io

import pytest
from PIL import Image

from media_queue.auth.interconnect import InterconnectTrust, generate_keypair

RED = (255, 0, 0)
BLUE = (0, 0, 255)


@pytest.fixture(name="keypair", scope="session")
def keypair_fixture():
    # 2048 bits keeps the suite fast; production keys are 4096
    return generate_keypair(2048)


@pytest.fixture(name="trust")
def trust_fixture(keypair):
    public_pem, private_pem = keypair
    return InterconnectTrust.from_pem(private_pem, public_pem, backend_url="http://origin.test", mq_url="http://mq.test")


@pytest.fixture(name="split_image")
def split_image_fixture():
    """factory for an image whose left half is red and right half is blue"""
    def make(width=400, height=300):
        img = Image.new("RGB", (width, height), BLUE)
        img.paste(RED, (0, 0, width // 2, height))
        return img
    return make


@pytest.fixture(name="encode")
def encode_fixture():
    """factory turning a PIL image into encoded bytes"""
    def make(img, fmt="JPEG"):
        buffer = io.BytesIO()
        options = {"quality": 95} if fmt == "JPEG" else {}
        img.save(buffer, format=fmt, **options)
        return buffer.getvalue()
    return make
