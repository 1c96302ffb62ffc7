"""
Database Schemas for the PC Builder backend

Each Pydantic model maps to a MongoDB collection (lowercased class name).
"""
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class RuleType(str, Enum):
    MAX_QUANTITY = "max_quantity"
    SOCKET_COMPATIBILITY = "socket_compatibility"
    FORM_FACTOR = "form_factor"
    POWER_REQUIREMENT = "power_requirement"
    MEMORY_TYPE = "memory_type"
    STORAGE_INTERFACE = "storage_interface"
    CUSTOM = "custom"


class Component(BaseModel):
    """
    PC components catalog
    Collection: "component"
    """
    name: str = Field(..., description="Display name of the component")
    category: str = Field(..., description="Category slug: cpu, motherboard, pc-case, psu-power-supply-unit, storage, memory, gpu-graphics-card, cooling, pc-fans, monitor")
    brand: Optional[str] = Field(None, description="Manufacturer or brand")
    sku: Optional[str] = Field(None, description="Stock keeping unit")
    price: float = Field(..., ge=0, description="Unit price")
    discount_percentage: float = Field(0, ge=0, le=100, description="Discount in percent")
    specifications: Dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form specs used by compatibility rules, e.g. {'socket': 'AM4', 'tdp': 65}",
    )
    is_active: bool = Field(True, description="Only active components are listed")


class CompatibilityRule(BaseModel):
    """
    Admin managed compatibility rules
    Collection: "compatibilityrule"
    """
    rule_type: RuleType = Field(..., description="Which check the rule runs")
    category: Optional[str] = Field(None, description="Category slug the rule is scoped to")
    rule_name: str = Field(..., description="Human readable name")
    rule_config: Dict[str, Any] = Field(default_factory=dict, description="Rule type specific configuration")
    error_message: str = Field(..., description="User facing violation message")
    is_active: bool = Field(True)


class SavedBuild(BaseModel):
    """
    Saved PC configurations, never updated once written
    Collection: "savedbuild"
    """
    user_id: Optional[str] = Field(None, description="Owner, None for guest builds")
    total_estimated_price: float = Field(..., ge=0)
    configuration_data: Dict[str, Any] = Field(..., description="Configuration snapshot as submitted")


class Cart(BaseModel):
    """
    Shopping carts
    Collection: "cart"
    """
    user_id: str = Field(..., description="Cart owner")
    subtotal: float = Field(0, ge=0)
    discount_amount: float = Field(0, ge=0)
    total_amount: float = Field(0)


class CartItem(BaseModel):
    """
    Cart line items, one per (cart, saved build)
    Collection: "cartitem"
    """
    cart_id: str = Field(...)
    custom_build_id: str = Field(..., description="Referenced savedbuild _id as string")
    quantity: int = Field(1, ge=1)
    price_at_added: float = Field(..., ge=0)
    discount_percentage: float = Field(0, ge=0, le=100)
    discounted_price: float = Field(..., ge=0)


class BuildRequest(BaseModel):
    configuration: Any = None
    total_price: Optional[float] = Field(None, ge=0, description="Client side total, recomputed when missing")
    total_estimated_price: Optional[float] = Field(None, ge=0)

    @property
    def client_total(self) -> Optional[float]:
        return self.total_price or self.total_estimated_price


class SavedBuildResponse(BaseModel):
    id: str
    total_estimated_price: float


class CheckoutResponse(BaseModel):
    custom_build_id: str
    cart_id: str

