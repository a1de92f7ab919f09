from fastapi import FastAPI, APIRouter, HTTPException, status
from starlette.middleware.cors import CORSMiddleware
import logging
from datetime import datetime, timedelta
from typing import Callable

import config
from models import Token, LoginRequest, UserResponse
from auth import verify_password, create_access_token, token_claims_for
from audit_service import AuditService
from permissions import PermissionChecker
from ledger_routes import create_ledger_routes
from ledger.store import EntityStore, build_store
from ledger.transaction_engine import TransactionEngine
from ledger.batch_processor import BatchProcessor
from ledger.statistics import TransactionStatisticsService
from ledger.client_service import ClientService

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(store: EntityStore, clock: Callable[[], datetime] = datetime.utcnow) -> FastAPI:
    """Wire services over one entity store and build the app"""

    app = FastAPI(
        title="Multi-Agency Ledger",
        version="1.0.0",
        description="Ledger transaction engine for multi-agency contract lending"
    )

    # Initialize services
    audit_service = AuditService(store, clock=clock)
    permission_checker = PermissionChecker(store)
    engine = TransactionEngine(
        store,
        audit_service=audit_service,
        default_timeout=config.LEDGER_TXN_TIMEOUT_SECONDS,
        clock=clock
    )
    batch_processor = BatchProcessor(engine, clock=clock)
    stats_service = TransactionStatisticsService(store, clock=clock)
    client_service = ClientService(store, audit_service=audit_service, clock=clock)

    # Create router with /api prefix
    api_router = APIRouter(prefix="/api")

    # ============================================
    # AUTHENTICATION ENDPOINTS
    # ============================================

    @api_router.post("/auth/login", response_model=Token)
    async def login(login_data: LoginRequest):
        """Authenticate user and return a JWT access token"""
        user = await store.find_user_by_username(login_data.username)

        if not user or not verify_password(login_data.password, user.get("hashed_password", "")):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid username or password"
            )

        # Check active status
        if not user.get("is_active", False):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is inactive"
            )

        access_token = create_access_token(
            token_claims_for(user),
            expires_delta=timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
        )
        logger.info(f"[AUTH] User {user['_id']} logged in")

        return Token(
            access_token=access_token,
            expires_in=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=UserResponse(
                user_id=user["_id"],
                username=user["username"],
                email=user["email"],
                full_name=user["full_name"],
                role=user["role"],
                agency_id=user.get("agency_id"),
                is_active=user.get("is_active", False)
            )
        )

    @api_router.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": clock(),
            "version": "1.0.0",
            "store": type(store).__name__
        }

    # Include router in main app
    app.include_router(api_router)

    # Include ledger routes
    app.include_router(create_ledger_routes(
        engine, batch_processor, stats_service, client_service, permission_checker
    ))

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def ensure_store_indexes():
        await store.ensure_indexes()

    @app.on_event("shutdown")
    async def shutdown_store():
        await store.close()

    return app


app = create_app(build_store(
    config.LEDGER_STORE,
    mongo_url=config.MONGO_URL,
    db_name=config.DB_NAME,
    max_retries=config.LEDGER_MAX_RETRIES
))
