# core/__init__.py

from .parsing import (
    extract_text_from_bytes,
    extract_cv,
    extract_profile,
    extract_skills,
    extract_experience,
    extract_projects,
    parse_dates,
    parse_month_year,
)

from .tenancy import (
    TenantService,
    is_domain_path,
    normalize_domain,
    encode_domain,
    decode_domain,
    validate_domain,
)
from .memory import KeyValueStore, get_store
from .portfolio import PortfolioService
from .templates import TemplateRegistry, default_registry
