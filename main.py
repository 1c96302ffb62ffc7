import os
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from builds import AuthenticationRequiredError, MongoBuildStore, checkout_build, save_build
from catalog import InvalidConfigurationError, MongoCatalog, is_builder_category
from compatibility import validate_configuration
from pricing import price_configuration
from rules import MongoRuleStore
from schemas import BuildRequest, CompatibilityRule, Component

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="PC Builder API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error(request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.detail})


# Dependencies, overridden in tests

def require_db():
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")


def get_catalog(_=Depends(require_db)):
    return MongoCatalog()


def get_rule_store(_=Depends(require_db)):
    return MongoRuleStore()


def get_build_store(_=Depends(require_db)):
    return MongoBuildStore()


def invalid_configuration() -> HTTPException:
    return HTTPException(status_code=400, detail="Invalid configuration")


@app.get("/")
def root():
    return {"message": "PC Builder API"}


@app.get("/api/pc-builder/component-types")
def list_component_types(catalog=Depends(get_catalog)):
    return {"success": True, "data": catalog.component_types()}


@app.get("/api/pc-builder/components/{type}")
def list_components_by_type(type: str, catalog=Depends(get_catalog)):
    if not is_builder_category(type):
        raise HTTPException(status_code=404, detail="Component type not found")
    return {"success": True, "data": catalog.components_by_type(type)}


@app.get("/api/pc-builder/compatibility-rules")
def list_compatibility_rules(rule_store=Depends(get_rule_store)):
    return {"success": True, "data": rule_store.list_rules()}


@app.post("/api/pc-builder/validate")
def validate_build(req: BuildRequest, catalog=Depends(get_catalog), rule_store=Depends(get_rule_store)):
    try:
        result = validate_configuration(req.configuration, catalog, rule_store)
    except InvalidConfigurationError:
        raise invalid_configuration()
    return {"success": True, "data": result.model_dump()}


@app.post("/api/pc-builder/calculate-price")
def calculate_build_price(req: BuildRequest, catalog=Depends(get_catalog)):
    try:
        breakdown = price_configuration(req.configuration, catalog)
    except InvalidConfigurationError:
        raise invalid_configuration()
    return {"success": True, "data": breakdown.model_dump()}


@app.post("/api/pc-builder/save-build", status_code=201)
def save_pc_build(
    req: BuildRequest,
    x_user_id: Optional[str] = Header(None),
    catalog=Depends(get_catalog),
    store=Depends(get_build_store),
):
    try:
        saved = save_build(req.configuration, catalog, store, user_id=x_user_id, total_price=req.client_total)
    except InvalidConfigurationError:
        raise invalid_configuration()
    except PyMongoError:
        logger.exception("Save build failed")
        raise HTTPException(status_code=500, detail="Failed to save build")
    return {"success": True, "message": "Build saved successfully", "data": saved.model_dump()}


@app.post("/api/pc-builder/checkout")
def checkout_pc_build(
    req: BuildRequest,
    x_user_id: Optional[str] = Header(None),
    catalog=Depends(get_catalog),
    store=Depends(get_build_store),
):
    try:
        result = checkout_build(req.configuration, catalog, store, user_id=x_user_id, total_price=req.client_total)
    except AuthenticationRequiredError:
        raise HTTPException(status_code=401, detail="Authentication required")
    except InvalidConfigurationError:
        raise invalid_configuration()
    except PyMongoError:
        logger.exception("Checkout build failed")
        raise HTTPException(status_code=500, detail="Failed to checkout PC build")
    return {"success": True, "message": "PC build added to cart successfully", "data": result.model_dump()}


# Seed data (small curated set)
SEED_COMPONENTS = [
    {"name": "AMD Ryzen 5 5600", "category": "cpu", "brand": "AMD", "price": 139.0, "specifications": {"socket": "AM4", "tdp": 65}},
    {"name": "Intel Core i5-12400F", "category": "cpu", "brand": "Intel", "price": 170.0, "discount_percentage": 10, "specifications": {"socket": "LGA1700", "tdp": 65}},

    {"name": "MSI B550-A Pro", "category": "motherboard", "brand": "MSI", "price": 119.0, "specifications": {"socket": "AM4", "form_factor": "ATX", "supported_memory_types": ["DDR4"], "storage_interfaces": ["SATA", "NVMe"], "power_consumption": 50}},
    {"name": "ASUS PRIME B660M-A", "category": "motherboard", "brand": "ASUS", "price": 129.0, "specifications": {"socket": "LGA1700", "form_factor": "mATX", "supported_memory_types": ["DDR4"], "storage_interfaces": ["SATA", "NVMe"], "power_consumption": 50}},

    {"name": "Corsair Vengeance 16GB (2x8) 3200", "category": "memory", "brand": "Corsair", "price": 45.0, "specifications": {"memory_type": "DDR4", "power_consumption": 5}},
    {"name": "G.SKILL Ripjaws S5 32GB (2x16) 5600", "category": "memory", "brand": "G.SKILL", "price": 99.0, "specifications": {"memory_type": "DDR5", "power_consumption": 5}},

    {"name": "NVIDIA RTX 3060", "category": "gpu-graphics-card", "brand": "NVIDIA", "price": 299.0, "specifications": {"tdp": 170}},
    {"name": "AMD Radeon RX 6700 XT", "category": "gpu-graphics-card", "brand": "AMD", "price": 329.0, "discount_percentage": 15, "specifications": {"tdp": 230}},

    {"name": "Samsung 970 EVO Plus 1TB", "category": "storage", "brand": "Samsung", "price": 79.0, "specifications": {"interface": "NVMe", "power_consumption": 6}},
    {"name": "Seagate Barracuda 2TB", "category": "storage", "brand": "Seagate", "price": 49.0, "specifications": {"interface": "SATA", "power_consumption": 8}},

    {"name": "Corsair 4000D Airflow", "category": "pc-case", "brand": "Corsair", "price": 94.0, "specifications": {"supported_form_factors": ["ATX", "mATX", "ITX"]}},
    {"name": "NZXT H210", "category": "pc-case", "brand": "NZXT", "price": 79.0, "specifications": {"supported_form_factors": ["ITX"]}},

    {"name": "Cooler Master Hyper 212", "category": "cooling", "brand": "Cooler Master", "price": 39.0, "specifications": {"power_consumption": 3}},

    {"name": "Corsair RM650x", "category": "psu-power-supply-unit", "brand": "Corsair", "price": 99.0, "specifications": {"wattage": 650}},
    {"name": "Seasonic Focus 400W", "category": "psu-power-supply-unit", "brand": "Seasonic", "price": 59.0, "specifications": {"wattage": "400W"}},
]

SEED_RULES = [
    {"rule_type": "socket_compatibility", "category": "cpu", "rule_name": "CPU socket must match motherboard",
     "rule_config": {"cpu_key": "cpu", "motherboard_key": "motherboard", "socket_field": "socket"},
     "error_message": "The selected CPU does not fit the motherboard socket."},
    {"rule_type": "form_factor", "category": "pc-case", "rule_name": "Motherboard must fit the case",
     "rule_config": {"motherboard_key": "motherboard", "case_key": "case", "form_factor_field": "form_factor"},
     "error_message": "The motherboard form factor is not supported by this case."},
    {"rule_type": "power_requirement", "category": "psu-power-supply-unit", "rule_name": "PSU must cover total power draw",
     "rule_config": {"psu_key": "psu", "power_field": "wattage"},
     "error_message": "The power supply cannot deliver enough power for this build."},
    {"rule_type": "memory_type", "category": "memory", "rule_name": "RAM type must be supported",
     "rule_config": {"ram_key": "ram", "motherboard_key": "motherboard", "memory_type_field": "memory_type"},
     "error_message": "This memory type is not supported by the motherboard."},
    {"rule_type": "storage_interface", "category": "storage", "rule_name": "Storage interface must be supported",
     "rule_config": {"storage_key": "storage", "motherboard_key": "motherboard", "interface_field": "interface"},
     "error_message": "This drive's interface is not supported by the motherboard."},
    {"rule_type": "max_quantity", "category": "memory", "rule_name": "At most 4 memory modules",
     "rule_config": {"component_key": "ram", "max_quantity": 4},
     "error_message": "You can select at most 4 memory modules."},
    {"rule_type": "max_quantity", "category": "storage", "rule_name": "At most 6 drives",
     "rule_config": {"component_key": "storage", "max_quantity": 6},
     "error_message": "You can select at most 6 storage drives."},
]


@app.post("/api/seed")
def seed_catalog(_=Depends(require_db)):
    db = database.db
    inserted = {}

    # Only seed empty collections
    for collection, schema, seed in (
        ("component", Component, SEED_COMPONENTS),
        ("compatibilityrule", CompatibilityRule, SEED_RULES),
    ):
        count = db[collection].count_documents({})
        if count == 0:
            for doc in seed:
                database.create_document(collection, schema(**doc))
            inserted[collection] = len(seed)
        else:
            inserted[collection] = 0
    return {"inserted": inserted}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
