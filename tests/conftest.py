import json

import pytest
from fastapi.testclient import TestClient

from database import db
from main import app
from security import hash_password

ADMIN_PASSWORD = "admin123"
CUSTOMER_PASSWORD = "password123"

PRODUCTS = [
    {"id": 1, "name": "Notebook", "category": "Notebooks", "price": 100, "stock": 3, "image": "notebook.jpg"},
    {"id": 2, "name": "Audífonos", "category": "Audio", "price": 50, "stock": 10, "image": "audio.jpg"},
    {"id": 3, "name": "Ultrabook", "category": "Notebooks", "price": 20, "stock": 0, "image": None},
]


def write_json(path, data):
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def read_json(path):
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def data_dir(tmp_path):
    users = [
        {
            "id": 1, "name": "Admin", "email": "admin@techstore.com",
            "password": hash_password(ADMIN_PASSWORD, rounds=4),
            "phone": "", "address": "", "role": "admin",
        },
        {
            "id": 2, "name": "Ana", "email": "ana@example.com",
            "password": hash_password(CUSTOMER_PASSWORD, rounds=4),
            "phone": "555-1234", "address": "Calle 1", "role": "customer",
        },
    ]
    write_json(tmp_path / "products.json", PRODUCTS)
    write_json(tmp_path / "users.json", users)
    write_json(tmp_path / "sales.json", [])
    db.load(tmp_path)
    return tmp_path


@pytest.fixture
def client(data_dir):
    return TestClient(app)


def login(client, email, password):
    res = client.post("/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.json()
    return res.json()["token"]


@pytest.fixture
def admin_headers(client):
    return {"Authorization": f"Bearer {login(client, 'admin@techstore.com', ADMIN_PASSWORD)}"}


@pytest.fixture
def customer_headers(client):
    return {"Authorization": f"Bearer {login(client, 'ana@example.com', CUSTOMER_PASSWORD)}"}
