"""
orderProcessing: order intake, shipment tracking, returns and inventory.

The agent only reasons about the data it is given. Committing the outcome to
an order system is the caller's job.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from agentcore.agents.base import AgentSpec, AgentType, Operation, Timeframe, dump, json_message, operation_table
from agentcore.llm.schema import ResponseSchema

Priority = Literal["high", "medium", "low"]


# ─────────────────────────────────────────────
# Request models
# ─────────────────────────────────────────────

class OrderItem(BaseModel):
    productId: str
    quantity: float
    price: float


class ShippingAddress(BaseModel):
    street: str
    city: str
    state: str
    country: str
    postalCode: str


class OrderData(BaseModel):
    customerId: str
    items: list[OrderItem] = Field(min_length=1)
    shippingAddress: ShippingAddress
    totalAmount: float


class PaymentInfo(BaseModel):
    method: Literal["credit_card", "upi", "bank_transfer", "wallet"]
    transactionId: str
    amount: float
    status: Literal["pending", "completed", "failed"]


class ProcessOrderRequest(BaseModel):
    orderData: OrderData
    paymentInfo: PaymentInfo


class TrackShipmentRequest(BaseModel):
    orderId: str = Field(min_length=1)
    trackingNumber: str = Field(min_length=1)
    shippingData: Optional[dict[str, Any]] = None


class ReturnItem(BaseModel):
    productId: str
    quantity: float
    reason: str


class ReturnRequest(BaseModel):
    orderId: str
    reason: str
    condition: str
    items: list[ReturnItem]


class HandleReturnRequest(BaseModel):
    returnRequest: ReturnRequest
    orderDetails: Optional[dict[str, Any]] = None


class InventoryChange(BaseModel):
    productId: str
    quantity: float
    type: Literal["increment", "decrement", "set"]
    reason: str


class UpdateInventoryRequest(BaseModel):
    changes: list[InventoryChange] = Field(min_length=1)
    reason: str = Field(min_length=1)


class PerformanceRequest(BaseModel):
    data: dict[str, Any]
    timeframe: Optional[Timeframe] = None


# ─────────────────────────────────────────────
# Response models
# ─────────────────────────────────────────────

class InventoryStatus(BaseModel):
    productId: str
    available: bool
    remainingStock: float


class NextStep(BaseModel):
    action: str
    details: str
    priority: Priority


class OrderNotification(BaseModel):
    recipient: Literal["customer", "artisan", "admin"]
    message: str
    channel: Literal["email", "sms", "in_app"]


class ProcessedOrder(BaseModel):
    """Order outcome and next steps."""
    orderId: str
    status: Literal["created", "payment_confirmed", "processing", "failed"]
    inventoryStatus: list[InventoryStatus]
    nextSteps: list[NextStep]
    notifications: list[OrderNotification]


class ShipmentStatus(BaseModel):
    location: str
    status: str
    timestamp: str
    details: str


class DeliveryPrediction(BaseModel):
    estimatedDelivery: str
    confidence: float
    potentialDelays: Optional[list[str]] = None


class JourneyLeg(BaseModel):
    location: str
    status: str
    timestamp: str
    nextDestination: Optional[str] = None


class TrackingNotification(BaseModel):
    trigger: str
    message: str
    sendAt: str


class ShipmentTracking(BaseModel):
    """Tracking insights with delivery predictions."""
    currentStatus: ShipmentStatus
    predictions: DeliveryPrediction
    journey: list[JourneyLeg]
    notifications: list[TrackingNotification]


class Resolution(BaseModel):
    type: Literal["full_refund", "partial_refund", "replacement", "rejected"]
    reason: str
    nextSteps: list[str]


class ReturnInventoryUpdate(BaseModel):
    productId: str
    action: Literal["restock", "damage_report", "quality_check"]
    quantity: float


class ProcessedReturn(BaseModel):
    """Return resolution."""
    returnId: str
    status: Literal["approved", "pending", "rejected"]
    refundAmount: float
    instructions: list[str]
    resolution: Resolution
    inventoryUpdates: list[ReturnInventoryUpdate]


class InventoryUpdate(BaseModel):
    productId: str
    oldQuantity: float
    newQuantity: float
    status: Literal["success", "failed", "warning"]


class InventoryAlert(BaseModel):
    type: Literal["low_stock", "out_of_stock", "reorder"]
    productId: str
    message: str
    priority: Priority


class DataPoint(BaseModel):
    key: str
    value: str


class InventoryRecommendation(BaseModel):
    type: str
    suggestion: str
    impact: str
    data: list[DataPoint]


class InventoryReport(BaseModel):
    """Inventory updates with alerts and recommendations."""
    updates: list[InventoryUpdate]
    alerts: list[InventoryAlert]
    recommendations: list[InventoryRecommendation]


class Metric(BaseModel):
    name: str
    value: float
    unit: Optional[str] = None
    trend: Literal["up", "down", "flat"]


class PerformanceReport(BaseModel):
    """Order fulfilment performance summary."""
    summary: str
    metrics: list[Metric]
    bottlenecks: list[str]
    recommendations: list[NextStep]


# ─────────────────────────────────────────────
# Composers
# ─────────────────────────────────────────────

def _compose_order(req: ProcessOrderRequest) -> list:
    return [json_message(
        {"order": dump(req.orderData), "payment": dump(req.paymentInfo)},
        "Process the order, validate inventory, and determine next steps.",
    )]


def _compose_tracking(req: TrackShipmentRequest) -> list:
    return [json_message(
        dump(req),
        "Analyze shipping data and provide detailed tracking insights with predictions.",
    )]


def _compose_return(req: HandleReturnRequest) -> list:
    return [json_message(
        {"request": dump(req.returnRequest), "orderDetails": req.orderDetails},
        "Process the return request and determine appropriate resolution.",
    )]


def _compose_inventory(req: UpdateInventoryRequest) -> list:
    return [json_message(dump(req), "Process inventory updates and provide insights and recommendations.")]


def _compose_performance(req: PerformanceRequest) -> list:
    return [json_message(
        dump(req),
        "Analyze order processing performance and highlight bottlenecks and improvements.",
    )]


SPEC = AgentSpec(
    agent_type=AgentType.ORDER_PROCESSING,
    description="Processes orders, shipments, returns and inventory changes.",
    operations=operation_table(
        Operation(
            name="processOrder",
            request_model=ProcessOrderRequest,
            compose=_compose_order,
            response_schema=ResponseSchema("processOrderRequest", ProcessedOrder),
        ),
        Operation(
            name="trackShipment",
            request_model=TrackShipmentRequest,
            compose=_compose_tracking,
            response_schema=ResponseSchema("analyzeShipment", ShipmentTracking),
        ),
        Operation(
            name="handleReturn",
            request_model=HandleReturnRequest,
            compose=_compose_return,
            response_schema=ResponseSchema("processReturn", ProcessedReturn),
        ),
        Operation(
            name="updateInventory",
            request_model=UpdateInventoryRequest,
            compose=_compose_inventory,
            response_schema=ResponseSchema("processInventoryUpdate", InventoryReport),
        ),
        Operation(
            name="analyzePerformance",
            request_model=PerformanceRequest,
            compose=_compose_performance,
            response_schema=ResponseSchema("analyzePerformance", PerformanceReport),
        ),
    ),
)
