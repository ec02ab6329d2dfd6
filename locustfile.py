import base64
import os
from pathlib import Path

from locust import HttpUser, task, between


def _load_sample_image() -> str:
    # Point LOCUST_IMAGE_PATH at a real crack photo when load-testing against the hosted model.
    path = os.getenv("LOCUST_IMAGE_PATH")
    raw = Path(path).read_bytes() if path else b"\xff\xd8\xff\xd9"
    return "data:image/jpeg;base64," + base64.b64encode(raw).decode("ascii")


SAMPLE_IMAGE_B64 = _load_sample_image()


class CrackScanUser(HttpUser):
    # Simulates users waiting between 1 and 3 seconds between requests
    wait_time = between(1, 3)

    @task(5)
    def analyze(self):
        self.client.post("/analyze", json={"imageBase64": SAMPLE_IMAGE_B64})

    @task(1)
    def health(self):
        self.client.get("/health")
