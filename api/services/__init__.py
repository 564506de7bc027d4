"""
Identity Reconciliation Services Package.

This package contains the identity-resolution logic and contact storage.
Use this module to import commonly-used services.

Example:
    from api.services import ContactStore, IdentityResolver

    store = ContactStore(db_path="data/contacts.db").open()
    view = IdentityResolver(store).identify(email="a@x.com")

Key service modules:
- contact_store: Contact model and SQLite store
- identity_resolver: cluster loading, primary election, merge and view assembly
- identifier_utils: email / phone validation and normalization
- resilience: error taxonomy and conflict retry
"""

from api.services.contact_store import (
    Contact,
    ContactFilter,
    ContactStore,
    LINK_PRIMARY,
    LINK_SECONDARY,
)

from api.services.identity_resolver import (
    ContactView,
    IdentityResolver,
)

from api.services.identifier_utils import (
    Observation,
    parse_observation,
)

from api.services.resilience import (
    ConflictError,
    IdentityValidationError,
    StoreIntegrityError,
    StoreUnavailableError,
)


__all__ = [
    # Store
    "Contact",
    "ContactFilter",
    "ContactStore",
    "LINK_PRIMARY",
    "LINK_SECONDARY",
    # Resolution
    "ContactView",
    "IdentityResolver",
    "Observation",
    "parse_observation",
    # Errors
    "ConflictError",
    "IdentityValidationError",
    "StoreIntegrityError",
    "StoreUnavailableError",
]
