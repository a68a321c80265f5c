"""
Import chats from a legacy JSON export into the current schema.

Run from project root:
    python -m scripts.import_legacy_chats chats.json [--users users.json] [--dry-run]

chats.json is a list of legacy chat documents. users.json (optional) is the
legacy users export; its _id/email pairs map legacy participant ids onto
existing accounts by email. Users must already exist here.
"""
import argparse
import json
import logging
import sys

from festchat.core.database import SessionLocal
from festchat.crud import user_crud
from festchat.service.chat_service import ChatService
from festchat.service.legacy_import import UserLookup, import_chat, normalize_chat, ref_key

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def load_json(path: str):
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def run(chats_path: str, users_path: str = None, dry_run: bool = False) -> None:
    docs = load_json(chats_path)
    if not isinstance(docs, list):
        logger.error("%s must contain a JSON list of chats", chats_path)
        sys.exit(1)
    legacy_ids = {}
    if users_path:
        for doc in load_json(users_path):
            key = ref_key(doc.get("_id"))
            if key and doc.get("email"):
                legacy_ids[key] = doc["email"]

    db = SessionLocal()
    try:
        lookup = UserLookup(user_crud.list_all(db), legacy_ids)
        admin = ChatService(db).resolve_admin()
        imported = skipped = failed = 0
        for index, doc in enumerate(docs, start=1):
            try:
                normalized = normalize_chat(doc, lookup, fallback_creator=admin)
            except ValueError as e:
                logger.warning("Chat #%d not imported: %s", index, e)
                failed += 1
                continue
            if dry_run:
                logger.info(
                    "Would import '%s' (%s) with %d participants",
                    normalized.name, normalized.chat_type, len(normalized.participants),
                )
                continue
            if import_chat(db, normalized, admin=admin) is None:
                skipped += 1
            else:
                imported += 1
        logger.info("Done: %d imported, %d skipped, %d failed", imported, skipped, failed)
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Import legacy chats")
    parser.add_argument("chats")
    parser.add_argument("--users")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()
    run(args.chats, args.users, args.dry_run)
