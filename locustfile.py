from locust import HttpUser, task, between
import random

PASSWORD = "load-test-pass"


def _register(client, role):
    email = f"{role}_{random.randint(1, 1_000_000_000)}@load.example.com"
    r = client.post("/auth/register", json={
        "name": f"{role} {email.split('@')[0]}",
        "email": email,
        "password": PASSWORD,
        "password_confirmation": PASSWORD,
        "role": role,
    })
    if r.status_code != 201:
        return None, None
    token = client.post("/auth/login", json={"email": email, "password": PASSWORD}).json()["access_token"]
    return r.json()["id"], {"Authorization": f"Bearer {token}"}


class FoodbankDonorUser(HttpUser):
    """Each simulated client is a donor paired with its own foodbank."""

    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.donor_id, self.donor_headers = _register(self.client, "donor")
        self.foodbank_id, self.foodbank_headers = _register(self.client, "foodbank")

    @task(3)
    def donate_and_match(self):
        if not self.donor_headers or not self.foodbank_headers:
            return
        quantity = random.randint(1, 20)
        req = self.client.post("/requests", json={"type": "food", "quantity": quantity},
                               headers=self.foodbank_headers)
        don = self.client.post("/donations", json={
            "donor_id": self.donor_id,
            "foodbank_id": self.foodbank_id,
            "type": "food",
            "quantity": quantity + random.randint(-2, 5),
        }, headers=self.donor_headers)
        if req.status_code == 201 and don.status_code == 201:
            self.client.post(f"/requests/{req.json()['id']}/assign/{don.json()['id']}",
                             headers=self.foodbank_headers, name="/requests/[id]/assign/[id]")

    @task(1)
    def list_donations(self):
        if self.donor_headers:
            self.client.get("/donations", headers=self.donor_headers)
