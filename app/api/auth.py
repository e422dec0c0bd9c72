"""Authentication endpoints."""
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.database import get_db
from app.models.user import User
from app.models.organization import Organization
from app.schemas.auth import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    OrganizationSummary,
    RegisterRequest,
    RegisterResponse,
    UserResponse,
)
from app.auth.api_key import create_api_key
from app.auth.jwt import (
    verify_password,
    get_password_hash,
    create_user_token
)
from app.auth.dependencies import TenantContext, get_user_context
from app.services.audit import record_event

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a new organization.

    Creates the organization on the free plan, its owner user and a default
    API key. The raw API key is returned once and cannot be retrieved later.
    """
    # Check if user exists
    result = await db.execute(
        select(User).where(User.email == payload.email)
    )
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    # Check if organization email exists
    result = await db.execute(
        select(Organization).where(Organization.email == payload.email)
    )
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Organization email already registered"
        )

    # Create organization
    organization = Organization(
        name=payload.organization_name,
        email=payload.email,
        plan="free",
        status="active"
    )
    db.add(organization)
    await db.flush()

    # Create owner user
    user = User(
        organization_id=organization.id,
        email=payload.email,
        name=payload.name,
        hashed_password=get_password_hash(payload.password),
        role="owner",
        is_active=True,
        last_login_at=datetime.utcnow()
    )
    db.add(user)

    await db.commit()
    await db.refresh(user)
    await db.refresh(organization)

    raw_key, _ = await create_api_key(db, organization.id, "Default API Key")

    await record_event(
        db,
        organization.id,
        "organization.created",
        user_id=user.id,
        resource_type="organization",
        resource_id=organization.id,
        request=request,
    )

    return RegisterResponse(
        message="Organization created successfully",
        token=create_user_token(user),
        user=UserResponse.model_validate(user),
        organization=OrganizationSummary.model_validate(organization),
        api_key=raw_key,
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Login with email and password.

    Returns a JWT access token for authenticated requests.

    **Token Usage**: Include the token in the Authorization header as `Bearer <token>`
    """
    # Get user by email
    result = await db.execute(
        select(User).where(User.email == payload.email)
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    organization = await db.get(Organization, user.organization_id)
    if not organization or not organization.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Organization account is not active"
        )

    # Update last login
    user.last_login_at = datetime.utcnow()
    await db.commit()
    await db.refresh(user)

    await record_event(
        db,
        organization.id,
        "user.login",
        user_id=user.id,
        resource_type="user",
        resource_id=user.id,
        request=request,
    )

    return AuthResponse(
        message="Login successful",
        token=create_user_token(user),
        user=UserResponse.model_validate(user),
        organization=OrganizationSummary.model_validate(organization),
    )


@router.get("/me", response_model=MeResponse)
async def get_current_user_info(
    context: TenantContext = Depends(get_user_context)
):
    """
    Get current user information.

    Requires authentication token.
    """
    return MeResponse(
        user=UserResponse.model_validate(context.user),
        organization=OrganizationSummary.model_validate(context.organization),
    )
