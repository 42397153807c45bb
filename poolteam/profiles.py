import logging
import re
import uuid
from typing import Any

from poolteam import db
from poolteam.errors import NotFound, PermissionDenied, ValidationError
from poolteam.stats import ensure_role, is_manager_role

logger = logging.getLogger(__name__)


def normalize_name(value: Any) -> str:
    return re.sub(r"\s+", " ", value.strip().lower()) if isinstance(value, str) else ""


def require_manager(caller_role: str | None) -> None:
    if not is_manager_role(caller_role):
        raise PermissionDenied("This action is for captains and vice captains.")


def resolve_caller_role(database_url: str, profile_id: str | None) -> str | None:
    if not profile_id:
        return None
    profile = db.fetch_profile(database_url, profile_id)
    return profile["role"] if profile else None


def known_players(database_url: str) -> dict[str, str]:
    return {profile["id"]: profile["display_name"] for profile in db.fetch_profiles(database_url)}


def player_identities(profile: dict) -> set[str]:
    """Stats rows may carry either the auth uid or the profile id."""
    return {value for value in (profile.get("id"), profile.get("uid")) if value}


def add_roster_entry(database_url: str, name: str, role: str, caller_role: str | None) -> str:
    require_manager(caller_role)
    trimmed = (name or "").strip()
    if not trimmed:
        raise ValidationError("Enter a player name.")
    if not db.insert_roster_entry(database_url, trimmed, ensure_role(role)):
        raise ValidationError("A roster entry with that name already exists. Choose a different name.")
    return trimmed


def create_profile(
    database_url: str,
    display_name: str,
    role: str,
    caller_role: str | None,
    uid: str | None = None,
) -> str:
    require_manager(caller_role)
    trimmed = (display_name or "").strip()
    if not trimmed:
        raise ValidationError("Enter a display name.")
    return db.insert_profile(
        database_url,
        {"display_name": trimmed, "role": ensure_role(role), "uid": uid or None},
    )


def set_subs_status(database_url: str, profile_id: str, subs_status: str, caller_role: str | None) -> None:
    require_manager(caller_role)
    if subs_status not in ("paid", "due"):
        raise ValidationError("Subs status must be 'paid' or 'due'.")
    if db.fetch_profile(database_url, profile_id) is None:
        raise NotFound("Profile not found")
    db.update_profile_fields(database_url, profile_id, {"subs_status": subs_status})
    db.set_legacy_subs_status(database_url, profile_id, subs_status)


def seed_user_profiles(
    database_url: str,
    *,
    overwrite: bool = False,
    link_up: bool = True,
    dry_run: bool = False,
    include_unassigned: bool = True,
) -> dict[str, int]:
    """Create or refresh one profile per roster entry and link the two back together.

    Roster entries match an existing profile by assigned uid first, then by
    display name.  A profile stored under the roster name is a placeholder
    from an older scheme and is moved to a generated id.  Totals come from
    the legacy player row when one exists, else from the matched profile.
    """
    profiles = db.fetch_profiles(database_url)
    profiles_by_id = {profile["id"]: profile for profile in profiles}
    by_name: dict[str, str] = {}
    by_uid: dict[str, str] = {}
    for profile in profiles:
        by_name.setdefault(normalize_name(profile["display_name"]), profile["id"])
        if profile.get("uid"):
            by_uid.setdefault(profile["uid"], profile["id"])

    counts = {"creates": 0, "updates": 0, "skipped": 0, "linked": 0}
    for entry in db.fetch_roster(database_url):
        roster_id = entry["id"]
        assigned_uid = (entry.get("assigned_uid") or "").strip()
        roster_name = (entry.get("display_name") or "").strip() or roster_id
        matched_id = by_uid.get(assigned_uid) if assigned_uid else None
        matched_id = matched_id or by_name.get(normalize_name(roster_name))

        if not assigned_uid and not matched_id and not include_unassigned:
            counts["skipped"] += 1
            continue

        existing = profiles_by_id.get(matched_id) if matched_id else None
        migrating = existing is not None and matched_id == roster_id
        target_id = matched_id if existing is not None and not migrating else uuid.uuid4().hex
        write_full = migrating or existing is None or overwrite

        legacy = db.fetch_legacy_player(database_url, roster_id)
        counts["updates" if existing is not None else "creates"] += 1

        totals_source = legacy or {
            "wins": existing["total_wins"] if existing else 0,
            "losses": existing["total_losses"] if existing else 0,
            "subs_status": existing["subs_status"] if existing else "due",
        }

        if not dry_run:
            if write_full:
                profile = {
                    "display_name": roster_name,
                    "role": ensure_role(entry.get("role")),
                    "uid": assigned_uid or None,
                    "linked_roster_id": roster_id,
                    "linked_player_id": roster_id if legacy else None,
                    "total_wins": totals_source["wins"],
                    "total_losses": totals_source["losses"],
                    "subs_status": totals_source["subs_status"],
                }
                if existing is not None and not migrating:
                    db.update_profile_fields(database_url, target_id, profile)
                else:
                    db.insert_profile(database_url, profile, target_id)
            else:
                minimal = {
                    "linked_roster_id": roster_id,
                    "linked_player_id": roster_id if legacy else None,
                }
                if assigned_uid:
                    minimal["uid"] = assigned_uid
                db.update_profile_fields(database_url, target_id, minimal)
            if migrating:
                db.delete_profile(database_url, roster_id)

        if link_up and not dry_run:
            db.link_roster_entry(
                database_url,
                roster_id,
                target_id,
                assigned_uid or None,
                entry.get("assigned_email"),
                entry.get("assigned_at"),
            )
            if legacy:
                db.link_legacy_player(database_url, roster_id, target_id, legacy["subs_status"])
            counts["linked"] += 1

    logger.info(
        "Profile seed%s: %d created, %d updated, %d skipped, %d linked",
        " (dry run)" if dry_run else "",
        counts["creates"],
        counts["updates"],
        counts["skipped"],
        counts["linked"],
    )
    return counts
