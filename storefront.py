"""
Storefront client for the TechStore API

Client-side state lives in two containers, both mirrored to a JSON file
standing in for the browser's local storage:

- AuthSession: logged in user and bearer token
- Cart: product lines with a quantity, capped at each product's stock

StorefrontClient talks to the API over httpx; Storefront keeps the catalog
and the category filter.
"""
import json
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional

import httpx

logger = logging.getLogger(__name__)

API_URL = os.getenv("API_URL", "http://localhost:8000")
ALL_CATEGORIES = "Todos"
CHECKOUT_CLEAR_DELAY = 2.5


class StorefrontError(Exception):
    """An API call failed; the message is the API's error text."""


class CartError(Exception):
    pass


class LocalStorage:
    def __init__(self, path):
        self.path = Path(path)
        self._data = {}
        if self.path.exists():
            try:
                self._data = json.loads(self.path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.error("Ignoring unreadable storage file %s", self.path)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value) -> None:
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data, indent=2, ensure_ascii=False), encoding="utf-8")


class AuthSession:
    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self.user: Optional[dict] = None
        self.token: Optional[str] = None
        token, user = storage.get("token"), storage.get("user")
        if token and user:
            self.token, self.user = token, user

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def login(self, user: dict, token: str) -> None:
        self.user, self.token = user, token
        self.storage.set("token", token)
        self.storage.set("user", user)

    def logout(self) -> None:
        self.user, self.token = None, None
        for key in ("token", "user", "cart"):
            self.storage.remove(key)


class Cart:
    def __init__(self, storage: LocalStorage):
        self.storage = storage
        saved = storage.get("cart")
        self.items: List[dict] = saved if isinstance(saved, list) else []

    def _save(self) -> None:
        self.storage.set("cart", self.items)

    def _find(self, product_id) -> Optional[dict]:
        return next((i for i in self.items if i["id"] == product_id), None)

    def add(self, product: dict) -> None:
        """Add one unit of product, never beyond its last known stock."""
        if product.get("stock", 0) <= 0:
            raise CartError("Producto sin stock")
        existing = self._find(product["id"])
        if existing:
            if existing["quantity"] >= product["stock"]:
                raise CartError(f"Stock máximo disponible: {product['stock']}")
            existing["quantity"] += 1
        else:
            self.items.append({**product, "quantity": 1})
        self._save()

    def remove(self, product_id) -> None:
        self.items = [i for i in self.items if i["id"] != product_id]
        self._save()

    def update_quantity(self, product_id, quantity: int, max_stock: int) -> None:
        if quantity <= 0:
            self.remove(product_id)
            return
        if quantity > max_stock:
            raise CartError(f"Stock máximo disponible: {max_stock}")
        item = self._find(product_id)
        if item:
            item["quantity"] = quantity
            self._save()

    def clear(self) -> None:
        self.items = []
        self._save()

    @property
    def total(self) -> float:
        return sum(i["price"] * i["quantity"] for i in self.items)

    @property
    def item_count(self) -> int:
        return sum(i["quantity"] for i in self.items)


class StorefrontClient:
    def __init__(self, http: Optional[httpx.Client] = None, base_url: str = API_URL):
        self.http = http or httpx.Client(base_url=base_url, timeout=10.0)

    def _request(self, method: str, path: str, token: Optional[str] = None, fallback: str = "Error en la operación", **kwargs):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        response = self.http.request(method, path, headers=headers, **kwargs)
        try:
            data = response.json()
        except ValueError:
            data = None
        if response.is_error:
            message = data.get("error") if isinstance(data, dict) else None
            raise StorefrontError(message or fallback)
        return data

    def products(self) -> List[dict]:
        return self._request("GET", "/products", fallback="Error al cargar productos")

    def categories(self) -> List[str]:
        return self._request("GET", "/categories")

    def login(self, session: AuthSession, email: str, password: str) -> dict:
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        session.login(data["user"], data["token"])
        return data["user"]

    def register(self, session: AuthSession, name: str, email: str, password: str, phone: str = "", address: str = "") -> dict:
        body = {"name": name, "email": email, "password": password, "phone": phone, "address": address}
        data = self._request("POST", "/auth/register", json=body)
        session.login(data["user"], data["token"])
        return data["user"]

    def my_orders(self, session: AuthSession) -> List[dict]:
        return self._request("GET", "/orders/my-orders", token=session.token)

    def checkout(self, cart: Cart, session: AuthSession, clear_delay: float = CHECKOUT_CLEAR_DELAY) -> dict:
        """Submit the cart as an order; the cart empties after clear_delay seconds."""
        data = self._request(
            "POST", "/orders", token=session.token,
            fallback="Error al procesar la orden", json={"items": cart.items},
        )
        timer = threading.Timer(clear_delay, cart.clear)
        timer.daemon = True
        timer.start()
        return data["order"]


class Storefront:
    def __init__(self, client: StorefrontClient):
        self.client = client
        self.products: List[dict] = []
        self.categories: List[str] = []
        self.selected_category = ALL_CATEGORIES
        self.error = ""

    def load_catalog(self) -> bool:
        """Fetch products and categories. Call again to retry after a failure."""
        try:
            self.products = self.client.products()
            self.error = ""
        except (StorefrontError, httpx.HTTPError) as e:
            logger.error("Loading products failed: %s", e)
            self.error = "No se pudieron cargar los productos. Verifica que el servidor esté corriendo."
            return False
        try:
            self.categories = self.client.categories()
        except (StorefrontError, httpx.HTTPError) as e:
            logger.error("Loading categories failed: %s", e)
        return True

    def filtered_products(self) -> List[dict]:
        if self.selected_category == ALL_CATEGORIES:
            return self.products
        return [p for p in self.products if p["category"] == self.selected_category]
