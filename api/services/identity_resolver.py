"""
Identity Resolver - consolidates contact observations into clusters.

Each identify call runs four steps inside one store transaction:

1. load_cluster    - records sharing the observed email or phone, expanded
                     to their whole cluster (primary + direct secondaries)
2. elect_primary / merge_cluster
                   - the oldest primary stays canonical; any other primary
                     and everything linked to it is re-pointed at it
3. record_if_new   - a secondary is stored when the observation brings an
                     email or phone the cluster has not seen yet
4. assemble_view   - the consolidated view returned to the caller

A conflicting concurrent write aborts the transaction and the whole sequence
is re-run from a fresh read.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from api.services.contact_store import (
    Contact,
    ContactFilter,
    ContactSession,
    ContactStore,
    LINK_PRIMARY,
    LINK_SECONDARY,
)
from api.services.identifier_utils import Observation, parse_observation
from api.services.resilience import RetryConfig, StoreIntegrityError, retry_sync

logger = logging.getLogger(__name__)


@dataclass
class ClusterSnapshot:
    """Records relevant to one observation, as read inside the transaction."""
    direct_matches: list[Contact] = field(default_factory=list)
    records: list[Contact] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.direct_matches


@dataclass
class ContactView:
    """Consolidated view of one cluster."""
    primary_contact_id: int
    emails: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    secondary_contact_ids: list[int] = field(default_factory=list)

    def to_response(self) -> dict:
        """Wire format. The misspelled key is part of the public contract."""
        return {
            "contact": {
                "primaryContatctId": self.primary_contact_id,
                "emails": list(self.emails),
                "phoneNumbers": list(self.phone_numbers),
                "secondaryContactIds": list(self.secondary_contact_ids),
            }
        }


def load_cluster(session: ContactSession, observation: Observation) -> ClusterSnapshot:
    """
    Find the records matching an observation and expand them to their cluster.

    Direct matches share the observed email or phone number. The cluster is
    every record whose id, or whose linked_id, is a direct match or the
    primary a direct match points at.
    """
    direct = session.find(ContactFilter(
        email=observation.email,
        phone_number=observation.phone_number,
    ))
    if not direct:
        return ClusterSnapshot()

    candidate_ids = set()
    for contact in direct:
        candidate_ids.add(contact.id)
        if contact.linked_id is not None:
            candidate_ids.add(contact.linked_id)

    records = session.find(ContactFilter(ids=candidate_ids, linked_ids=candidate_ids))
    return ClusterSnapshot(direct_matches=direct, records=records)


def elect_primary(records: list[Contact]) -> Contact:
    """
    Pick the canonical record of a cluster.

    The oldest primary wins; equal timestamps fall back to the lowest id.

    Raises:
        StoreIntegrityError: the records contain no primary
    """
    primaries = [r for r in records if r.is_primary]
    if not primaries:
        ids = sorted(r.id for r in records)
        raise StoreIntegrityError(f"Cluster {ids} has no primary contact")
    return min(primaries, key=lambda r: (r.created_at, r.id))


def merge_cluster(session: ContactSession, canonical: Contact, records: list[Contact]) -> list[Contact]:
    """
    Demote every primary other than the canonical one and re-link its secondaries.

    Records already linked to the canonical record are left untouched. Each
    write is checked against the updated_at we read, so a record changed by
    someone else raises ConflictError and aborts the unit of work.

    Returns:
        The contacts that were updated (demoted primaries and re-linked secondaries)
    """
    demoted = [r for r in records if r.is_primary and r.id != canonical.id]
    if not demoted:
        return []

    updated = []
    for contact in demoted:
        updated.append(session.update_by_id(
            contact.id,
            link_precedence=LINK_SECONDARY,
            linked_id=canonical.id,
            expected_updated_at=contact.updated_at,
        ))

    demoted_ids = [c.id for c in demoted]
    orphans = session.find(ContactFilter(linked_ids=demoted_ids))
    for contact in orphans:
        if contact.id == canonical.id:
            continue
        updated.append(session.update_by_id(
            contact.id,
            link_precedence=LINK_SECONDARY,
            linked_id=canonical.id,
            expected_updated_at=contact.updated_at,
        ))

    logger.info(
        f"Merged into contact {canonical.id}: demoted {demoted_ids}, "
        f"re-linked {len(updated) - len(demoted)} secondaries"
    )
    return updated


def record_if_new(
    session: ContactSession,
    canonical: Contact,
    records: list[Contact],
    observation: Observation,
) -> Optional[Contact]:
    """
    Store the observation as a secondary if it adds an unseen identifier.

    The new record keeps both observed fields, even when only one is new.

    Returns:
        The created secondary, or None when nothing was new
    """
    known = set()
    for contact in records:
        if contact.email:
            known.add(("email", contact.email))
        if contact.phone_number:
            known.add(("phone", contact.phone_number))

    is_new_email = observation.email is not None and ("email", observation.email) not in known
    is_new_phone = observation.phone_number is not None and ("phone", observation.phone_number) not in known

    if not (is_new_email or is_new_phone):
        return None

    secondary = session.create(
        email=observation.email,
        phone_number=observation.phone_number,
        link_precedence=LINK_SECONDARY,
        linked_id=canonical.id,
    )
    logger.info(f"Created secondary contact {secondary.id} linked to {canonical.id}")
    return secondary


def assemble_view(session: ContactSession, canonical: Contact) -> ContactView:
    """
    Build the consolidated view of the canonical record's cluster.

    The canonical email and phone come first; the rest follow in the order
    the records were created, each listed once.
    """
    cluster = session.find(ContactFilter(ids=[canonical.id], linked_ids=[canonical.id]))

    emails = [canonical.email] if canonical.email else []
    phone_numbers = [canonical.phone_number] if canonical.phone_number else []
    secondary_ids = []

    for contact in cluster:
        if contact.email and contact.email not in emails:
            emails.append(contact.email)
        if contact.phone_number and contact.phone_number not in phone_numbers:
            phone_numbers.append(contact.phone_number)
        if contact.id != canonical.id:
            secondary_ids.append(contact.id)

    return ContactView(
        primary_contact_id=canonical.id,
        emails=emails,
        phone_numbers=phone_numbers,
        secondary_contact_ids=secondary_ids,
    )


class IdentityResolver:
    """
    Runs identify requests against a ContactStore.

    Stateless apart from the store handle; safe to share between requests.
    """

    def __init__(self, store: ContactStore, retry_config: Optional[RetryConfig] = None):
        """
        Args:
            store: Open contact store
            retry_config: Conflict retry policy (default from settings)
        """
        if retry_config is None:
            from config.settings import settings
            retry_config = RetryConfig(
                max_retries=settings.max_conflict_retries,
                base_delay=settings.retry_base_delay,
            )
        self.store = store
        self.retry_config = retry_config
        self._resolve_with_retry = retry_sync(config=retry_config)(self._resolve)

    def identify(self, email: Any = None, phone_number: Any = None) -> ContactView:
        """
        Resolve an observation to its consolidated contact view.

        Args:
            email: Raw email from the request
            phone_number: Raw phone number from the request (string or number)

        Returns:
            ContactView of the cluster the observation belongs to

        Raises:
            IdentityValidationError: bad or missing identifiers (never retried)
            ConflictError: still conflicting after all retries
        """
        observation = parse_observation(email=email, phone_number=phone_number)
        return self._resolve_with_retry(observation)

    def _resolve(self, observation: Observation) -> ContactView:
        """One attempt: the full read-elect-merge-record-assemble sequence."""
        with self.store.unit_of_work() as session:
            snapshot = load_cluster(session, observation)

            if snapshot.is_empty:
                primary = session.create(
                    email=observation.email,
                    phone_number=observation.phone_number,
                    link_precedence=LINK_PRIMARY,
                )
                logger.info(f"Created primary contact {primary.id}")
                return ContactView(
                    primary_contact_id=primary.id,
                    emails=[primary.email] if primary.email else [],
                    phone_numbers=[primary.phone_number] if primary.phone_number else [],
                )

            canonical = elect_primary(snapshot.records)
            merge_cluster(session, canonical, snapshot.records)
            record_if_new(session, canonical, snapshot.records, observation)
            return assemble_view(session, canonical)
