#!/usr/bin/env python3
"""
Audit and repair contact cluster links.

Every secondary contact should point directly at its cluster's primary.
This script reports records that break that rule and, with --execute,
re-points multi-hop chains at the primary at the end of the chain.

Usage:
    python scripts/check_clusters.py [--db data/contacts.db] [--execute]
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.contact_store import Contact, ContactStore, LINK_PRIMARY, LINK_SECONDARY

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def find_root(contact: Contact, by_id: dict[int, Contact]) -> Optional[Contact]:
    """Follow linked_id until a primary is reached. None on a dangling link or cycle."""
    seen = {contact.id}
    current = contact
    while not current.is_primary:
        target = by_id.get(current.linked_id) if current.linked_id is not None else None
        if target is None or target.id in seen:
            return None
        seen.add(target.id)
        current = target
    return current


def check_clusters(store: ContactStore, dry_run: bool = True) -> dict:
    """
    Audit cluster links and optionally repair chains.

    Returns:
        Stats dict with counts per problem kind and repairs made
    """
    stats = {
        'contacts': 0,
        'primaries_with_link': 0,
        'dangling_secondaries': 0,
        'chained_secondaries': 0,
        'repaired': 0,
    }

    with store.unit_of_work() as session:
        contacts = session.find_all()
        by_id = {c.id: c for c in contacts}
        stats['contacts'] = len(contacts)

        for contact in contacts:
            if contact.is_primary:
                if contact.linked_id is not None:
                    stats['primaries_with_link'] += 1
                    logger.warning(f"Primary {contact.id} carries linked_id {contact.linked_id}")
                    if not dry_run:
                        session.update_by_id(contact.id, LINK_PRIMARY, None, contact.updated_at)
                        stats['repaired'] += 1
                continue

            target = by_id.get(contact.linked_id) if contact.linked_id is not None else None
            if target is not None and target.is_primary:
                continue

            root = find_root(contact, by_id)
            if root is None:
                stats['dangling_secondaries'] += 1
                logger.warning(f"Secondary {contact.id} has no reachable primary (linked_id={contact.linked_id})")
                continue

            stats['chained_secondaries'] += 1
            logger.info(f"Secondary {contact.id} reaches primary {root.id} through {contact.linked_id}")
            if not dry_run:
                session.update_by_id(contact.id, LINK_SECONDARY, root.id, contact.updated_at)
                stats['repaired'] += 1

    return stats


def main():
    parser = argparse.ArgumentParser(description='Audit and repair contact cluster links')
    parser.add_argument('--db', help='Path to contacts database (default from settings)')
    parser.add_argument('--execute', action='store_true', help='Actually apply repairs')

    args = parser.parse_args()

    with ContactStore(db_path=args.db) as store:
        stats = check_clusters(store, dry_run=not args.execute)

    mode = "EXECUTE" if args.execute else "DRY RUN"
    print(f"\n=== Cluster check ({mode}) ===")
    for key, value in stats.items():
        print(f"  {key}: {value}")

    problems = stats['primaries_with_link'] + stats['dangling_secondaries'] + stats['chained_secondaries']
    if problems and not args.execute:
        print("\nRun with --execute to repair chains.")


if __name__ == '__main__':
    main()
