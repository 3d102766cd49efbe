import os
import logging
from datetime import datetime, timezone
from typing import List, Optional
from fastapi import FastAPI, Depends, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import db, get_documents
from errors import ApiError, AuthError, ConflictError, NotFoundError, ValidationError
from schemas import Product as ProductSchema, User as UserSchema, Sale as SaleSchema, public_user
from security import create_token, decode_token, hash_password, verify_password

logger = logging.getLogger(__name__)

API_VERSION = "2.0"

app = FastAPI(title="TechStore API", version=API_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handlers

@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        err = errors[0]
        field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        message = f"{field}: {err.get('msg')}" if field else err.get("msg")
    else:
        message = "Datos inválidos"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Error interno del servidor"})


# Utilities

def doc_id(id_str: str, not_found: str) -> int:
    try:
        return int(id_str)
    except ValueError:
        raise NotFoundError(not_found)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# Models for requests
class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class OrderItemRequest(BaseModel):
    id: int
    quantity: int = Field(..., ge=1)


class OrderRequest(BaseModel):
    items: Optional[List[OrderItemRequest]] = None


class GuestOrderRequest(OrderRequest):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[str] = None


class PriceUpdateRequest(BaseModel):
    price: float


# Auth helpers

def get_user_by_email(email: str) -> Optional[dict]:
    return db["user"].find_one(email=email)


def current_claims(authorization: Optional[str] = Header(None)) -> dict:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Token no proporcionado")
    return decode_token(token.strip())


def admin_claims(claims: dict = Depends(current_claims)) -> dict:
    if claims.get("role") != "admin":
        raise AuthError("Acceso denegado. Se requiere rol de administrador", status_code=403)
    return claims


def auth_response(message: str, user: dict) -> dict:
    return {"message": message, "user": public_user(user), "token": create_token(user)}


# Order helpers

def place_order(user: dict, items: Optional[List[OrderItemRequest]]) -> dict:
    """Validate every line against current stock, then record all of them.

    Nothing is written unless every line passes; stock and sales are locked
    for the whole check-and-commit so concurrent orders cannot oversell.
    """
    if not items:
        raise ValidationError("El carrito está vacío")

    with db["product"].transaction() as products, db["sale"].transaction() as sales:
        by_id = {p["id"]: p for p in products}
        # remaining stock after the lines seen so far
        remaining = {}
        for item in items:
            product = by_id.get(item.id)
            if product is None:
                raise ValidationError(f"Producto {item.id} no encontrado")
            available = remaining.get(product["id"], product["stock"])
            if available < item.quantity:
                logger.info("Order by user %s rejected: %s has %s left, %s requested",
                            user["id"], product["name"], available, item.quantity)
                raise ValidationError(
                    f"Stock insuficiente para {product['name']}. Disponible: {available}"
                )
            remaining[product["id"]] = available - item.quantity

        date = now_iso()
        new_sales = []
        for item in items:
            product = by_id[item.id]
            sale = SaleSchema(
                id=db["sale"].next_id(),
                user_id=user["id"],
                product_id=product["id"],
                quantity=item.quantity,
                total=product["price"] * item.quantity,
                date=date,
            )
            product["stock"] -= item.quantity
            new_sales.append(sale.model_dump(by_alias=True))
        sales.extend(new_sales)

    order_total = sum(s["total"] for s in new_sales)
    logger.info("Order %s placed by user %s: %d lines, total %s",
                new_sales[0]["id"], user["id"], len(new_sales), order_total)
    return {
        "id": new_sales[0]["id"],
        "userId": user["id"],
        "userName": user["name"],
        "items": new_sales,
        "total": order_total,
        "date": new_sales[0]["date"],
    }


@app.get("/")
def read_root():
    return {
        "message": "API E-commerce TechStore",
        "version": API_VERSION,
        "endpoints": {
            "public": ["/products", "/categories", "/auth/login", "/auth/register", "/orders/guest"],
            "protected": ["/orders", "/orders/my-orders", "/auth/profile"],
            "admin": ["/sales", "/users/:id", "/products/:id"],
        },
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "storage": "❌ Not Loaded",
        "data_dir": str(db.data_dir) if db.data_dir else "❌ Not Set",
        "collections": {},
    }
    try:
        if db.collections:
            response["storage"] = "✅ Loaded"
            response["collections"] = {
                name: {"documents": db[name].count(), "file_exists": db[name].path.exists()}
                for name in db.list_collection_names()
            }
    except Exception as e:
        response["storage"] = f"⚠️ {str(e)[:80]}"
    return response


# Catalog endpoints
@app.get("/products")
def list_products() -> List[dict]:
    return get_documents("product")


@app.get("/products/{product_id}")
def get_product(product_id: str):
    product = db["product"].find_one(id=doc_id(product_id, "Producto no encontrado"))
    if not product:
        raise NotFoundError("Producto no encontrado")
    return product


@app.get("/categories")
def list_categories() -> List[str]:
    return list(dict.fromkeys(p["category"] for p in get_documents("product")))


# Auth endpoints
@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest):
    if not payload.name or not payload.email or not payload.password:
        raise ValidationError("Nombre, email y contraseña son requeridos")
    with db["user"].transaction() as users:
        if any(u["email"] == payload.email for u in users):
            raise ConflictError("El email ya está registrado")
        user = UserSchema(
            id=db["user"].next_id(),
            name=payload.name,
            email=payload.email,
            password=hash_password(payload.password),
            phone=payload.phone or "",
            address=payload.address or "",
            role="customer",
        ).model_dump()
        users.append(user)
    logger.info("Registered user %s <%s>", user["id"], user["email"])
    return auth_response("Usuario registrado exitosamente", user)


@app.post("/auth/login")
def login(payload: LoginRequest):
    if not payload.email or not payload.password:
        raise ValidationError("Email y contraseña son requeridos")
    user = get_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.get("password")):
        logger.info("Failed login for %s", payload.email)
        raise AuthError("Credenciales inválidas")
    return auth_response("Login exitoso", user)


@app.get("/auth/profile")
def get_profile(claims: dict = Depends(current_claims)):
    user = db["user"].find_one(id=claims["id"])
    if not user:
        raise NotFoundError("Usuario no encontrado")
    return public_user(user)


@app.put("/auth/profile")
def update_profile(payload: ProfileUpdateRequest, claims: dict = Depends(current_claims)):
    update_data = {k: v for k, v in payload.model_dump().items() if v}
    if update_data:
        user = db["user"].update_one(claims["id"], update_data)
    else:
        user = db["user"].find_one(id=claims["id"])
    if not user:
        raise NotFoundError("Usuario no encontrado")
    return {"message": "Perfil actualizado", "user": public_user(user)}


# Order endpoints
@app.post("/orders", status_code=201)
def create_order(payload: OrderRequest, claims: dict = Depends(current_claims)):
    if not payload.items:
        raise ValidationError("El carrito está vacío")
    user = db["user"].find_one(id=claims["id"])
    if not user:
        raise NotFoundError("Usuario no encontrado")
    order = place_order(user, payload.items)
    return {"message": "Orden creada exitosamente", "order": order}


@app.post("/orders/guest", status_code=201)
def create_guest_order(payload: GuestOrderRequest):
    if not payload.items:
        raise ValidationError("El carrito está vacío")
    # the new account is only written if the order goes through
    with db["user"].transaction() as users:
        user = next((u for u in users if u["email"] == payload.email), None)
        if user is not None and user.get("password"):
            raise ConflictError("El email ya está registrado")
        if user is None:
            user = UserSchema(
                id=db["user"].next_id(),
                name=payload.name,
                email=payload.email,
                phone=payload.phone or "",
                address=payload.address or "",
            ).model_dump()
            users.append(user)
            logger.info("Creating guest account %s <%s>", user["id"], user["email"])
        order = place_order(user, payload.items)
    return {"message": "Orden creada exitosamente", "order": order}


@app.get("/orders/my-orders")
def my_orders(claims: dict = Depends(current_claims)) -> List[dict]:
    products = {p["id"]: p for p in get_documents("product")}
    result = []
    for sale in get_documents("sale", userId=claims["id"]):
        product = products.get(sale["productId"])
        sale["productName"] = product["name"] if product else "Producto no encontrado"
        sale["productImage"] = product.get("image") if product else None
        result.append(sale)
    return result


# Admin endpoints
@app.put("/products/{product_id}")
def update_product_price(product_id: str, payload: PriceUpdateRequest, claims: dict = Depends(admin_claims)):
    product = db["product"].update_one(doc_id(product_id, "Producto no encontrado"), {"price": payload.price})
    if not product:
        raise NotFoundError("Producto no encontrado")
    logger.info("Admin %s set price of product %s to %s", claims["id"], product["id"], payload.price)
    return {"message": "Precio actualizado", "product": ProductSchema(**product).model_dump()}


@app.delete("/users/{user_id}")
def delete_user(user_id: str, claims: dict = Depends(admin_claims)):
    uid = doc_id(user_id, "Usuario no encontrado")
    with db["user"].lock:
        if get_documents("sale", userId=uid):
            raise ConflictError("No se puede eliminar el usuario con ventas registradas")
        if not db["user"].delete_one(uid):
            raise NotFoundError("Usuario no encontrado")
    logger.info("Admin %s deleted user %s", claims["id"], uid)
    return {"message": "Usuario eliminado correctamente"}


@app.get("/sales")
def list_sales(claims: dict = Depends(admin_claims)) -> List[dict]:
    return get_documents("sale")


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
