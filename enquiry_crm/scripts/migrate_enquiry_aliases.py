"""
ENQUIRY CRM - Migration: backfill canonical field names on stored enquiries.
  enquiryState           -> enquiryDistrict
  knowledgeOfDevelopment -> knowledgeOfAndroid
Both names end up holding the same value; fees and paymentHistory are
recomputed with the read-time normalization.
Run: python -m enquiry_crm.scripts.migrate_enquiry_aliases [--dry-run]
"""

import asyncio
import sys

from motor.motor_asyncio import AsyncIOMotorClient

from enquiry_crm.config import DB_NAME, MONGO_URL
from enquiry_crm.services.enquiry_normalizer import FIELD_ALIASES, migrate_enquiry

MIGRATED_FIELDS = [name for pair in FIELD_ALIASES for name in pair] + [
    "paymentHistory", "totalFees", "paidFees", "remainingFees",
]


def changes_for(record: dict) -> dict:
    """Fields whose stored value differs from the normalized one."""
    normalized = migrate_enquiry(record)
    return {f: normalized[f] for f in MIGRATED_FIELDS if record.get(f) != normalized[f]}


async def migrate(dry_run: bool = False):
    client = AsyncIOMotorClient(MONGO_URL)
    db = client[DB_NAME]

    total = await db.enquiries.count_documents({})
    print(f"Total enquiries in DB: {total}")

    modified = 0
    alias_fixed = 0
    fees_fixed = 0

    cursor = db.enquiries.find({}, {"_id": 0})

    async for record in cursor:
        update = changes_for(record)
        if not update:
            continue

        modified += 1
        if any(f in update for pair in FIELD_ALIASES for f in pair):
            alias_fixed += 1
        if any(f in update for f in ("paidFees", "remainingFees", "totalFees")):
            fees_fixed += 1

        if not dry_run:
            await db.enquiries.update_one({"id": record["id"]}, {"$set": update})

    client.close()

    print("\n════════════════════════════════════")
    print("  MIGRATION REPORT" + ("  (DRY RUN)" if dry_run else ""))
    print("════════════════════════════════════")
    print(f"  Total enquiries:   {total}")
    print(f"  Records modified:  {modified}")
    print(f"  Aliases backfilled:{alias_fixed:>5}")
    print(f"  Fees recomputed:   {fees_fixed}")
    print("════════════════════════════════════")

    return {"total": total, "modified": modified, "aliases": alias_fixed, "fees": fees_fixed}


if __name__ == "__main__":
    asyncio.run(migrate(dry_run="--dry-run" in sys.argv))
