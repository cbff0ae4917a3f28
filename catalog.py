import json
import re
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

import structlog
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import ValidationError
from pymongo.database import Database

import config
from database import create_document, get_db, get_documents, serialize_doc, to_object_id, utcnow
from errors import NotFound, ValidationFailed
from schemas import (
    Product as ProductSchema,
    ProductStatusBody,
    RemoveProductBody,
    SingleProductBody,
    StockUpdateBody,
)
from security import require

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/product", tags=["product"])

SORTS = {
    "low-high": [("price", 1)],
    "high-low": [("price", -1)],
}


# ----------------------- Helpers -----------------------
def parse_sizes(raw: Optional[str]) -> List[str]:
    """Sizes arrive from the admin form as a JSON array string."""
    if raw is None or raw == "":
        return []
    try:
        sizes = json.loads(raw)
    except ValueError:
        raise ValidationFailed("sizes must be a JSON array of labels")
    if not isinstance(sizes, list) or not all(isinstance(s, str) for s in sizes):
        raise ValidationFailed("sizes must be a JSON array of labels")
    return sizes


def store_images(files: List[Optional[UploadFile]]) -> List[str]:
    upload_dir = Path(config.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    urls = []
    for upload in files:
        if upload is None or not upload.filename:
            continue
        if upload.content_type and not upload.content_type.startswith("image/"):
            raise ValidationFailed(f"{upload.filename} is not an image")
        name = f"{uuid4().hex}{Path(upload.filename).suffix.lower()}"
        (upload_dir / name).write_bytes(upload.file.read())
        urls.append(f"/uploads/{name}")
    return urls[:config.MAX_PRODUCT_IMAGES]


# ----------------------- Service -----------------------
def create_product(db: Database, data: dict) -> str:
    try:
        product = ProductSchema(**data, date=utcnow())
    except ValidationError as e:
        raise ValidationFailed(e.errors()[0]["msg"])
    if not product.image:
        raise ValidationFailed("At least one product image is required")
    product_id = create_document(db, "product", product)
    logger.info("product_created", product_id=product_id, name=product.name)
    return product_id


def get_product(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": to_object_id(product_id)})
    if not product:
        raise NotFound("Product not found")
    return product


def list_products(db: Database, q: Optional[str] = None, category: Optional[List[str]] = None,
                  sub_category: Optional[List[str]] = None, status: Optional[str] = None,
                  sort: Optional[str] = None) -> list:
    filt = {}
    if q:
        filt["name"] = {"$regex": re.escape(q), "$options": "i"}
    if category:
        filt["category"] = {"$in": category}
    if sub_category:
        filt["subCategory"] = {"$in": sub_category}
    if status:
        filt["status"] = status
    return get_documents(db, "product", filt, sort=SORTS.get(sort, [("date", -1)]))


def update_product(db: Database, product_id: str, fields: dict) -> None:
    oid = to_object_id(product_id)
    current = get_product(db, product_id)
    merged = {k: v for k, v in current.items() if k not in ("_id", "createdAt", "updatedAt")}
    merged.update(fields)
    try:
        ProductSchema(**merged)
    except ValidationError as e:
        raise ValidationFailed(e.errors()[0]["msg"])
    db["product"].update_one({"_id": oid}, {"$set": {**fields, "updatedAt": utcnow()}})
    logger.info("product_updated", product_id=product_id, fields=sorted(fields))


def remove_product(db: Database, product_id: str) -> None:
    res = db["product"].delete_one({"_id": to_object_id(product_id)})
    if res.deleted_count == 0:
        raise NotFound("Product not found")
    logger.info("product_removed", product_id=product_id)


# ----------------------- Routes -----------------------
@router.get("/list")
def product_list(q: Optional[str] = None, category: Optional[List[str]] = Query(None),
                 subCategory: Optional[List[str]] = Query(None), status: Optional[str] = None,
                 sort: Optional[str] = None, db: Database = Depends(get_db)):
    products = list_products(db, q, category, subCategory, status, sort)
    return {"success": True, "products": [serialize_doc(p) for p in products]}


@router.post("/single")
def product_single(body: SingleProductBody, db: Database = Depends(get_db)):
    return {"success": True, "product": serialize_doc(get_product(db, body.product_id))}


@router.post("/add", status_code=201)
def product_add(
    name: str = Form(...),
    description: str = Form(""),
    price: float = Form(...),
    category: str = Form(...),
    sub_category: str = Form("", alias="subCategory"),
    sizes: Optional[str] = Form(None),
    bestseller: bool = Form(False),
    stock: int = Form(0),
    image1: Optional[UploadFile] = File(None),
    image2: Optional[UploadFile] = File(None),
    image3: Optional[UploadFile] = File(None),
    image4: Optional[UploadFile] = File(None),
    _admin: dict = Depends(require("catalog:write")),
    db: Database = Depends(get_db),
):
    data = {
        "name": name,
        "description": description,
        "price": price,
        "category": category,
        "sub_category": sub_category,
        "sizes": parse_sizes(sizes),
        "bestseller": bestseller,
        "stock": stock,
        "image": store_images([image1, image2, image3, image4]),
    }
    product_id = create_product(db, data)
    return {"success": True, "message": "Product Added", "productId": product_id}


@router.post("/update")
def product_update(
    id: str = Form(...),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    category: Optional[str] = Form(None),
    sub_category: Optional[str] = Form(None, alias="subCategory"),
    sizes: Optional[str] = Form(None),
    bestseller: Optional[bool] = Form(None),
    image1: Optional[UploadFile] = File(None),
    image2: Optional[UploadFile] = File(None),
    image3: Optional[UploadFile] = File(None),
    image4: Optional[UploadFile] = File(None),
    _admin: dict = Depends(require("catalog:write")),
    db: Database = Depends(get_db),
):
    fields = {
        "name": name,
        "description": description,
        "price": price,
        "category": category,
        "subCategory": sub_category,
        "bestseller": bestseller,
    }
    fields = {k: v for k, v in fields.items() if v is not None}
    if sizes is not None:
        fields["sizes"] = parse_sizes(sizes)
    # New uploads replace the whole gallery; no uploads keep the old one
    images = store_images([image1, image2, image3, image4])
    if images:
        fields["image"] = images
    update_product(db, id, fields)
    return {"success": True, "message": "Product Updated"}


@router.post("/remove")
def product_remove(body: RemoveProductBody, _admin: dict = Depends(require("catalog:write")),
                   db: Database = Depends(get_db)):
    remove_product(db, body.id)
    return {"success": True, "message": "Product Removed"}


@router.post("/update-stock")
def product_update_stock(body: StockUpdateBody, _admin: dict = Depends(require("catalog:write")),
                         db: Database = Depends(get_db)):
    update_product(db, body.product_id, {"stock": body.stock})
    return {"success": True, "message": "Stock updated successfully!"}


@router.post("/update-status")
def product_update_status(body: ProductStatusBody, _admin: dict = Depends(require("catalog:write")),
                          db: Database = Depends(get_db)):
    update_product(db, body.id, {"status": body.status})
    return {"success": True, "product": serialize_doc(get_product(db, body.id))}
