# api/server.py

import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from core.memory import StoreError, get_store
from core.models import User
from core.parsing import CVParseError, UnsupportedInputFormat, extract_cv, extract_text_from_bytes
from core.portfolio import PortfolioService, UnknownTemplateError
from core.templates import default_registry
from core.tenancy import (
    ConflictError,
    RegistrationError,
    TenantService,
    is_domain_path,
    validate_domain,
    validate_username,
)
from identity.auth import AuthError, IdentityProvider

# --------------------------------------------------
# ENV
# --------------------------------------------------
if os.getenv("ENV") != "production":
    load_dotenv()

PRIMARY_HOSTNAME = os.getenv("PRIMARY_HOSTNAME", "localhost")
FIREBASE_API_KEY = os.getenv("FIREBASE_API_KEY")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

if not FIREBASE_API_KEY:
    logger.warning("Missing FIREBASE_API_KEY, sign-in and admin endpoints disabled")

TEMPLATES = default_registry()

# --------------------------------------------------
# APP
# --------------------------------------------------
app = FastAPI(title="Portfolio Builder Server")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --------------------------------------------------
# DEPENDENCIES
# --------------------------------------------------
def get_tenant_service() -> TenantService:
    return TenantService(get_store(), PRIMARY_HOSTNAME)


def get_portfolio_service() -> PortfolioService:
    return PortfolioService(get_store(), TEMPLATES)


def get_identity() -> IdentityProvider:
    if not FIREBASE_API_KEY:
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    return IdentityProvider(FIREBASE_API_KEY)


def current_user(
    authorization: Optional[str] = Header(None),
    identity: IdentityProvider = Depends(get_identity),
) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return identity.verify_token(authorization.split(" ", 1)[1].strip())
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))


# --------------------------------------------------
# MODELS
# --------------------------------------------------
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Credentials(CamelModel):
    email: str
    password: str


class SettingsRequest(CamelModel):
    username: str
    custom_domain: str = ""
    is_active: bool = True


# --------------------------------------------------
# HELPERS
# --------------------------------------------------
def load_public_portfolio(
    request: Request,
    tenants: TenantService,
    portfolios: PortfolioService,
    user_id: Optional[str] = None,
    username: Optional[str] = None,
    domain_path: Optional[str] = None,
) -> Dict[str, Any]:
    hostname = request.url.hostname
    resolved = tenants.resolve_user_id(user_id, username, domain_path, hostname)

    if not resolved:
        if tenants.is_custom_domain(hostname):
            detail = "Domain not configured or portfolio not found"
        else:
            detail = "Portfolio not found"
        raise HTTPException(status_code=404, detail=detail)

    portfolio = portfolios.get_public_portfolio(resolved)
    if portfolio is None:
        raise HTTPException(status_code=404, detail="Portfolio not found or not published")

    template = TEMPLATES.get(portfolio.template_id)
    return {
        "userId": resolved,
        "portfolio": portfolio.to_store(),
        "template": template.model_dump() if template else None,
    }


def _store_failure(e: Exception) -> HTTPException:
    logger.error("Store write failed: %s", e)
    return HTTPException(status_code=502, detail=str(e))


# --------------------------------------------------
# ROUTES
# --------------------------------------------------
@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/templates")
def list_templates():
    return [t.model_dump() for t in TEMPLATES.all()]


# ---------- auth ----------
@app.post("/auth/sign-in")
def sign_in(creds: Credentials, identity: IdentityProvider = Depends(get_identity)):
    try:
        user = identity.sign_in(creds.email, creds.password)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return {"user": user.to_store(), "idToken": identity.id_token}


@app.post("/auth/sign-up")
def sign_up(creds: Credentials, identity: IdentityProvider = Depends(get_identity)):
    try:
        user = identity.sign_up(creds.email, creds.password)
    except AuthError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"user": user.to_store(), "idToken": identity.id_token}


# ---------- admin: settings ----------
@app.get("/admin/settings")
def get_settings(
    request: Request,
    user: User = Depends(current_user),
    tenants: TenantService = Depends(get_tenant_service),
):
    config = tenants.get_tenant_config(user.uid)
    if config is None:
        return {"config": None, "portfolioUrl": f"{str(request.base_url).rstrip('/')}/portfolio/{user.uid}"}
    return {
        "config": config.to_store(),
        "portfolioUrl": tenants.portfolio_url(config, str(request.base_url)),
    }


@app.put("/admin/settings")
def save_settings(
    req: SettingsRequest,
    request: Request,
    user: User = Depends(current_user),
    tenants: TenantService = Depends(get_tenant_service),
):
    custom_domain = None
    try:
        validate_username(req.username)
        if req.custom_domain.strip():
            custom_domain = validate_domain(req.custom_domain.strip())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        tenants.claim_username(req.username, user.uid)
        if custom_domain:
            tenants.claim_domain(custom_domain, user.uid)
        config = tenants.save_tenant_config(
            user.uid,
            username=req.username,
            custom_domain=custom_domain,
            is_active=req.is_active,
        )
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RegistrationError as e:
        raise _store_failure(e)

    return {
        "config": config.to_store(),
        "portfolioUrl": tenants.portfolio_url(config, str(request.base_url)),
    }


# ---------- admin: editor ----------
@app.get("/admin/portfolio")
def get_draft(
    user: User = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    try:
        return portfolios.current_draft(user.uid).to_store()
    except StoreError as e:
        raise _store_failure(e)


@app.put("/admin/portfolio")
def save_draft(
    updates: Dict[str, Any] = Body(...),
    user: User = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    try:
        return portfolios.update_draft(user.uid, updates).to_store()
    except UnknownTemplateError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StoreError as e:
        raise _store_failure(e)


@app.post("/admin/portfolio/publish")
def publish(
    user: User = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    try:
        return portfolios.publish(user.uid).to_store()
    except UnknownTemplateError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StoreError as e:
        raise _store_failure(e)


@app.post("/admin/cv-import")
async def cv_import(
    file: UploadFile = File(...),
    user: User = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    data = await file.read()
    try:
        text = extract_text_from_bytes(file.filename, data, file.content_type)
    except UnsupportedInputFormat as e:
        raise HTTPException(status_code=415, detail=str(e))

    try:
        partial = extract_cv(text)
    except CVParseError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        portfolios.import_cv(user.uid, partial)
    except StoreError as e:
        raise _store_failure(e)

    imported = partial.to_store()
    logger.info(
        "CV import for %s: %d skills, %d jobs, %d projects",
        user.uid,
        len(imported.get("skills", [])),
        len(imported.get("experience", [])),
        len(imported.get("projects", [])),
    )
    return {"imported": imported}


# ---------- public view ----------
@app.get("/")
def home(
    request: Request,
    tenants: TenantService = Depends(get_tenant_service),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    return load_public_portfolio(request, tenants, portfolios)


@app.get("/portfolio/{user_id}")
def portfolio_by_user_id(
    user_id: str,
    request: Request,
    tenants: TenantService = Depends(get_tenant_service),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    return load_public_portfolio(request, tenants, portfolios, user_id=user_id)


@app.get("/u/{username}")
def portfolio_by_username(
    username: str,
    request: Request,
    tenants: TenantService = Depends(get_tenant_service),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    return load_public_portfolio(request, tenants, portfolios, username=username)


# Must stay last: catches /johndoe.com style paths for local domain testing.
@app.get("/{domain_path}")
def portfolio_by_domain_path(
    domain_path: str,
    request: Request,
    tenants: TenantService = Depends(get_tenant_service),
    portfolios: PortfolioService = Depends(get_portfolio_service),
):
    if not is_domain_path(domain_path):
        raise HTTPException(status_code=404, detail="Not found")
    return load_public_portfolio(request, tenants, portfolios, domain_path=domain_path)
