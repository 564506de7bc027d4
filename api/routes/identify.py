"""
Identify API route.

POST /identify consolidates an (email, phoneNumber) observation into the
caller's contact cluster and returns the unified view.
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from api.services.contact_store import ContactStore
from api.services.identity_resolver import IdentityResolver
from api.services.resilience import IdentityValidationError, StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["identify"])

INTERNAL_ERROR = "Internal Server Error"


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class IdentifyRequest(BaseModel):
    # Any: type errors are reported by parse_observation
    model_config = ConfigDict(extra="ignore")

    email: Optional[Any] = None
    phoneNumber: Optional[Any] = None


class ContactPayload(BaseModel):
    primaryContatctId: int
    emails: list[str]
    phoneNumbers: list[str]
    secondaryContactIds: list[int]


class IdentifyResponse(BaseModel):
    contact: ContactPayload


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_contact_store(request: Request) -> ContactStore:
    """Contact store opened by the application lifespan."""
    store = getattr(request.app.state, "contact_store", None)
    if store is None:
        raise StoreUnavailableError("store not initialized")
    return store


def get_identity_resolver(store: ContactStore = Depends(get_contact_store)) -> IdentityResolver:
    return IdentityResolver(store)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post(
    "/identify",
    response_model=IdentifyResponse,
    responses={400: {"description": "Invalid identifiers"}, 500: {"description": "Unexpected failure"}},
)
def identify(
    request: IdentifyRequest,
    resolver: IdentityResolver = Depends(get_identity_resolver),
):
    """Identify a contact by email and/or phone number."""
    try:
        view = resolver.identify(email=request.email, phone_number=request.phoneNumber)
    except IdentityValidationError as e:
        return JSONResponse(status_code=400, content={"error": e.message})
    except Exception:
        logger.exception("Error in identify")
        return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR})

    return view.to_response()
