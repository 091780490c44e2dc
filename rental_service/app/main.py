import json
import logging
import os
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Tuple, Type

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy import text

from . import database, schemas
from .lifecycle import RentalLifecycleController
from .notifier import TelegramNotifier
from .publisher import DocumentPublisher
from .records import RecordAccessor, create_tables
from .s3_client import SelectelS3Service
from .schemas import AdminAction, UserAction

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Rental Documents Service",
    description="Rental lifecycle and contract/return act signing",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# action -> (схема запроса, метод контроллера)
USER_ROUTES: Dict[UserAction, Tuple[Type[BaseModel], str]] = {
    UserAction.UPDATE_LOCATION: (schemas.LocationRequest, "update_location"),
    UserAction.VERIFY_TOKEN: (schemas.TokenRequest, "verify_token"),
    UserAction.GET_PENDING_CONTRACTS: (schemas.UserRequest, "get_pending_contracts"),
    UserAction.GET_CONTRACT_DETAILS: (schemas.RentalRequest, "get_contract_details"),
    UserAction.CONFIRM_CONTRACT: (schemas.SignatureRequest, "confirm_contract"),
    UserAction.GET_ACTIVE_RENTAL: (schemas.UserRequest, "get_active_rental"),
    UserAction.GET_PAYMENT_METHOD: (schemas.UserRequest, "get_payment_method"),
    UserAction.GENERATE_RETURN_ACT: (schemas.RentalRequest, "generate_return_act"),
    UserAction.CONFIRM_RETURN_ACT: (schemas.SignatureRequest, "confirm_return_act"),
    UserAction.UNBIND_PAYMENT_METHOD: (schemas.UserRequest, "unbind_payment_method"),
}

ADMIN_ROUTES: Dict[AdminAction, Tuple[Type[BaseModel], str]] = {
    AdminAction.FINALIZE_RETURN: (schemas.FinalizeReturnRequest, "finalize_return"),
    AdminAction.SET_VERIFICATION_STATUS: (schemas.VerificationStatusRequest, "set_verification_status"),
}


def check_routes(routes: Dict[Any, Tuple[Type[BaseModel], str]], action_type) -> None:
    """Каждое действие перечисления должно иметь обработчик в контроллере."""
    missing = [action.value for action in action_type if action not in routes]
    if missing:
        raise RuntimeError(f"No handler for actions: {', '.join(missing)}")
    for action, (_, method_name) in routes.items():
        if not callable(getattr(RentalLifecycleController, method_name, None)):
            raise RuntimeError(f"Handler {method_name} for {action.value} is not defined")


check_routes(USER_ROUTES, UserAction)
check_routes(ADMIN_ROUTES, AdminAction)


@lru_cache
def get_controller() -> RentalLifecycleController:
    """Контроллер и его зависимости создаются один раз на процесс."""
    return RentalLifecycleController(
        records=RecordAccessor(database.AsyncSessionLocal),
        publisher=DocumentPublisher(SelectelS3Service()),
        notifier=TelegramNotifier(),
    )


@app.on_event("startup")
async def startup():
    await create_tables(database.engine)


@app.on_event("shutdown")
async def shutdown():
    await get_controller().notifier.aclose()
    await database.engine.dispose()


async def read_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as e:
        logger.error(f"Failed to parse request body: {e}")
        return {}
    # Тело может прийти строкой с JSON внутри
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError as e:
            logger.error(f"Failed to parse request body: {e}")
            return {}
    return body if isinstance(body, dict) else {}


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid field {field}: {first.get('msg')}"


async def dispatch(body: Dict[str, Any], action_type, routes, controller, invalid_message: str) -> JSONResponse:
    try:
        action = action_type(body.get("action"))
    except (ValueError, TypeError):
        return JSONResponse(status_code=400, content={"error": invalid_message})

    request_model, method_name = routes[action]
    try:
        payload = request_model.model_validate(body)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": _validation_message(e)})

    try:
        outcome = await getattr(controller, method_name)(payload)
    except Exception as e:
        logger.exception(f"Handler error for action {action.value}: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})

    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


@app.post("/api/user")
async def user_api(request: Request, controller: RentalLifecycleController = Depends(get_controller)):
    body = await read_body(request)
    return await dispatch(body, UserAction, USER_ROUTES, controller, "Invalid action")


@app.post("/api/admin")
async def admin_api(request: Request, controller: RentalLifecycleController = Depends(get_controller)):
    body = await read_body(request)
    return await dispatch(body, AdminAction, ADMIN_ROUTES, controller, "Invalid admin action")


@app.get("/health")
async def health_check():
    health_info = {
        "status": "healthy",
        "service": "rental-documents",
        "timestamp": datetime.utcnow().isoformat()
    }

    # Проверка базы данных
    try:
        async with database.AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        health_info["database"] = {"status": "connected"}
    except Exception as e:
        health_info["database"] = {"status": "error", "error": str(e)}
        health_info["status"] = "unhealthy"

    return health_info


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "10000")))
