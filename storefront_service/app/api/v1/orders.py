from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from ...core.settings import StorefrontSettings
from ...schemas.order import (
    CancellationPolicyQuery,
    CancelOrderRequest,
    CreateOrderRequest,
    ListOrdersQuery,
    TrackOrderRequest,
)
from ...services.order_service import OrderLifecycleService, RequestContext
from ...utils.envelope import success_response
from ...utils.jwt_handler import JWTHandler
from ...utils.logging import setup_storefront_logging
from ...validation import RequestValidator
from ..deps import (
    GuestTokenDep,
    JWTHandlerDep,
    OrderServiceDep,
    RequestContextDep,
    RequestValidatorDep,
    SettingsDep,
)

logger = setup_storefront_logging("storefront_orders_api")

router = APIRouter(prefix="/orders")


def _query_dict(request: Request) -> Dict[str, Any]:
    return dict(request.query_params)


@router.post("/create-order", status_code=status.HTTP_201_CREATED)
async def create_order(
    request: Request,
    context: RequestContext = RequestContextDep,
    settings: StorefrontSettings = SettingsDep,
    validator: RequestValidator = RequestValidatorDep,
    order_service: OrderLifecycleService = OrderServiceDep,
) -> JSONResponse:
    """Place an order for a signed-in customer or a guest"""
    payload = validator.validate(
        CreateOrderRequest, await request.body()
    ).raise_for_errors()

    result = await order_service.create(payload, context)

    response = success_response(result, status_code=status.HTTP_201_CREATED)
    if result.tracking_token:
        response.set_cookie(
            settings.GUEST_TOKEN_COOKIE,
            result.tracking_token,
            max_age=settings.GUEST_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite="lax",
        )
    return response


@router.post("/cancel-order")
async def cancel_order(
    request: Request,
    context: RequestContext = RequestContextDep,
    validator: RequestValidator = RequestValidatorDep,
    order_service: OrderLifecycleService = OrderServiceDep,
) -> JSONResponse:
    """Cancel a whole order or some of its items"""
    payload = validator.validate(
        CancelOrderRequest, await request.body()
    ).raise_for_errors()

    outcome = await order_service.cancel(payload, context)
    return success_response(outcome, no_store=True)


@router.get("/cancel-order-policy")
async def cancel_order_policy(
    request: Request,
    context: RequestContext = RequestContextDep,
    validator: RequestValidator = RequestValidatorDep,
    order_service: OrderLifecycleService = OrderServiceDep,
) -> JSONResponse:
    """Current cancellation terms for an order; never cached"""
    query = validator.validate(
        CancellationPolicyQuery, _query_dict(request)
    ).raise_for_errors()

    result = await order_service.get_cancellation_policy(query.order_id, context)
    return success_response(result, no_store=True)


def _with_guest_credential(
    params: Dict[str, Any], guest_token: Optional[str], jwt_handler: JWTHandler
) -> Dict[str, Any]:
    """Fill a missing order number and email from the guest tracking cookie."""
    if not guest_token or (params.get("orderNumber") and params.get("email")):
        return params
    try:
        guest = jwt_handler.verify_guest_token(guest_token)
    except ValueError as e:
        logger.info("Ignoring invalid guest credential", extra={"reason": str(e)})
        return params
    filled = dict(params)
    filled.setdefault("orderNumber", guest.order_number)
    filled.setdefault("email", guest.email)
    return filled


async def _track(
    order_service: OrderLifecycleService, query: TrackOrderRequest
) -> JSONResponse:
    result = await order_service.track(query.order_number, query.email, query.phone)
    return success_response(result, no_store=True)


@router.get("/track-order")
async def track_order(
    request: Request,
    guest_token: Optional[str] = GuestTokenDep,
    jwt_handler: JWTHandler = JWTHandlerDep,
    validator: RequestValidator = RequestValidatorDep,
    order_service: OrderLifecycleService = OrderServiceDep,
) -> JSONResponse:
    """Track an order by number and email from the query string"""
    params = _with_guest_credential(_query_dict(request), guest_token, jwt_handler)
    query = validator.validate(TrackOrderRequest, params).raise_for_errors()
    return await _track(order_service, query)


@router.post("/track-order")
async def track_order_post(
    request: Request,
    validator: RequestValidator = RequestValidatorDep,
    order_service: OrderLifecycleService = OrderServiceDep,
) -> JSONResponse:
    """Track an order by number and email from a JSON body"""
    query = validator.validate(
        TrackOrderRequest, await request.body()
    ).raise_for_errors()
    return await _track(order_service, query)


@router.get("/list-orders")
async def list_orders(
    request: Request,
    context: RequestContext = RequestContextDep,
    validator: RequestValidator = RequestValidatorDep,
    order_service: OrderLifecycleService = OrderServiceDep,
) -> JSONResponse:
    """List the caller's orders with pagination, statistics and filters"""
    query = validator.validate(ListOrdersQuery, _query_dict(request)).raise_for_errors()

    result = await order_service.list(query, context)
    return success_response(result, no_store=True)
