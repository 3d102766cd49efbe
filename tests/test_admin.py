from conftest import read_json
from database import db


def test_update_price(client, admin_headers, data_dir):
    res = client.put("/products/2", json={"price": 45.5}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["message"] == "Precio actualizado"
    assert res.json()["product"]["price"] == 45.5
    assert read_json(data_dir / "products.json")[1]["price"] == 45.5


def test_update_price_requires_admin(client, customer_headers):
    res = client.put("/products/2", json={"price": 1}, headers=customer_headers)
    assert res.status_code == 403
    assert res.json() == {"error": "Acceso denegado. Se requiere rol de administrador"}
    assert db["product"].find_one(id=2)["price"] == 50


def test_update_price_requires_token(client):
    res = client.put("/products/2", json={"price": 1})
    assert res.status_code == 401


def test_update_price_of_unknown_product(client, admin_headers):
    res = client.put("/products/99", json={"price": 1}, headers=admin_headers)
    assert res.status_code == 404
    assert res.json() == {"error": "Producto no encontrado"}


def test_update_price_must_be_numeric(client, admin_headers):
    res = client.put("/products/2", json={"price": "caro"}, headers=admin_headers)
    assert res.status_code == 400
    assert db["product"].find_one(id=2)["price"] == 50


def test_delete_user_with_sales_is_refused(client, admin_headers, customer_headers, data_dir):
    client.post("/orders", json={"items": [{"id": 2, "quantity": 1}]}, headers=customer_headers)
    res = client.delete("/users/2", headers=admin_headers)
    assert res.status_code == 400
    assert res.json() == {"error": "No se puede eliminar el usuario con ventas registradas"}
    assert db["user"].count() == 2
    assert len(read_json(data_dir / "users.json")) == 2


def test_delete_user_without_sales(client, admin_headers, data_dir):
    res = client.delete("/users/2", headers=admin_headers)
    assert res.status_code == 200
    assert res.json() == {"message": "Usuario eliminado correctamente"}
    assert [u["id"] for u in db["user"].find()] == [1]
    assert [u["id"] for u in read_json(data_dir / "users.json")] == [1]


def test_delete_unknown_user(client, admin_headers):
    res = client.delete("/users/99", headers=admin_headers)
    assert res.status_code == 404
    assert res.json() == {"error": "Usuario no encontrado"}


def test_delete_user_requires_admin(client, customer_headers):
    res = client.delete("/users/1", headers=customer_headers)
    assert res.status_code == 403
    assert db["user"].count() == 2


def test_deleted_user_ids_are_not_reused(client, admin_headers):
    client.delete("/users/2", headers=admin_headers)
    res = client.post("/auth/register", json={"name": "Beto", "email": "beto@example.com", "password": "x1"})
    assert res.json()["user"]["id"] == 3


def test_list_sales(client, admin_headers, customer_headers):
    client.post("/orders", json={"items": [{"id": 1, "quantity": 1}, {"id": 2, "quantity": 1}]}, headers=customer_headers)
    res = client.get("/sales", headers=admin_headers)
    assert res.status_code == 200
    assert [s["productId"] for s in res.json()] == [1, 2]


def test_list_sales_requires_admin(client, customer_headers):
    res = client.get("/sales", headers=customer_headers)
    assert res.status_code == 403


def test_update_price_returns_full_product(client, admin_headers):
    res = client.put("/products/3", json={"price": 25}, headers=admin_headers)
    assert res.json()["product"] == {
        "id": 3, "name": "Ultrabook", "category": "Notebooks", "price": 25.0, "stock": 0, "image": None,
    }
