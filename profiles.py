# Giglet profiles — users, creators, brands
# Sign-up writes the user record and the role profile in one transaction.
# Verification flags and social links feed the trust score.

import logging
import re
import time
from typing import Optional

from db import Store
from errors import ConflictError, NotFoundError, ValidationError
from models import SOCIAL_PLATFORMS, Brand, Creator, User, UserRole, new_id
from trust import trust_breakdown

log = logging.getLogger("giglet")

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_.]{3,30}$")
VERIFICATION_FLAGS = ("email_verified", "phone_verified", "stripe_onboarding_complete",
                      "identity_verified")


class ProfileService:
    def __init__(self, store: Store):
        self.store = store

    def create_creator(self, fields: dict, user_id: Optional[str] = None) -> Creator:
        fields = dict(fields or {})
        username = str(fields.get("username") or "").strip()
        if not USERNAME_RE.match(username):
            raise ValidationError("Username must be 3-30 letters, digits, '_' or '.'")
        for key in ("rep", "balance", "id", "created_at", "updated_at", "metrics",
                    *VERIFICATION_FLAGS):
            fields.pop(key, None)

        creator = Creator.from_dict({**fields, "id": user_id or new_id("cr"), "username": username})
        user = User(id=creator.id, role=UserRole.CREATOR, username=username,
                    name=str(fields.get("name") or username), email=str(fields.get("email") or ""))
        with self.store.transaction() as conn:
            if self.store.ops.get(conn, "creators", creator.id) is not None:
                raise ConflictError(f"Creator {creator.id} already exists")
            taken = [d for d in self.store.ops.find(conn, "users", role=UserRole.CREATOR.value)
                     if (d.get("username") or "").lower() == username.lower()]
            if taken:
                raise ConflictError(f"Username {username} is taken")
            self.store.ops.put(conn, "users", user.to_dict())
            self.store.ops.put(conn, "creators", creator.to_dict())
        log.info("CREATOR %s signed up (%s)", creator.id, username)
        return creator

    def create_brand(self, fields: dict, user_id: Optional[str] = None) -> Brand:
        fields = dict(fields or {})
        name = str(fields.get("company_name") or "").strip()
        if not name:
            raise ValidationError("Company name is required")
        brand = Brand(
            id=user_id or new_id("br"),
            company_name=name,
            website=str(fields.get("website") or ""),
            industry=str(fields.get("industry") or ""),
        )
        user = User(id=brand.id, role=UserRole.BRAND, name=name,
                    email=str(fields.get("email") or ""))
        with self.store.transaction() as conn:
            if self.store.ops.get(conn, "brands", brand.id) is not None:
                raise ConflictError(f"Brand {brand.id} already exists")
            self.store.ops.put(conn, "users", user.to_dict())
            self.store.ops.put(conn, "brands", brand.to_dict())
        log.info("BRAND %s signed up (%s)", brand.id, name)
        return brand

    def get_creator(self, creator_id: str) -> Creator:
        doc = self.store.get("creators", creator_id)
        if doc is None:
            raise NotFoundError(f"Creator {creator_id} not found")
        return Creator.from_dict(doc)

    def get_brand(self, brand_id: str) -> Brand:
        doc = self.store.get("brands", brand_id)
        if doc is None:
            raise NotFoundError(f"Brand {brand_id} not found")
        return Brand.from_dict(doc)

    def list_creators(self) -> list:
        return [Creator.from_dict(d) for d in self.store.find("creators", order_by="created_at")]

    def _mutate_creator(self, creator_id: str, fn) -> Creator:
        with self.store.transaction() as conn:
            doc = self.store.ops.get(conn, "creators", creator_id)
            if doc is None:
                raise NotFoundError(f"Creator {creator_id} not found")
            creator = Creator.from_dict(doc)
            fn(creator)
            creator.updated_at = time.time()
            self.store.ops.put(conn, "creators", creator.to_dict())
        return creator

    def set_verifications(self, creator_id: str, **flags) -> Creator:
        unknown = set(flags) - set(VERIFICATION_FLAGS)
        if unknown:
            raise ValidationError(f"Unknown verification flags: {', '.join(sorted(unknown))}")

        def apply(creator):
            for key, value in flags.items():
                if value is not None:
                    setattr(creator, key, bool(value))

        creator = self._mutate_creator(creator_id, apply)
        log.info("CREATOR %s verifications updated, trust=%d", creator_id,
                 trust_breakdown(creator).score)
        return creator

    def connect_social(self, creator_id: str, platform: str, handle: str,
                       followers: int = 0) -> Creator:
        platform = (platform or "").strip().lower()
        if platform not in SOCIAL_PLATFORMS:
            raise ValidationError(f"Platform must be one of {', '.join(SOCIAL_PLATFORMS)}")
        if followers < 0:
            raise ValidationError("Follower count cannot be negative")

        def apply(creator):
            creator.socials[platform] = handle
            creator.social_connections[platform] = True
            creator.following_count[platform] = int(followers)

        return self._mutate_creator(creator_id, apply)

    def disconnect_social(self, creator_id: str, platform: str) -> Creator:
        platform = (platform or "").strip().lower()

        def apply(creator):
            creator.socials.pop(platform, None)
            creator.social_connections[platform] = False
            creator.following_count.pop(platform, None)

        return self._mutate_creator(creator_id, apply)

    def set_bank_account(self, creator_id: str, bank_account_id: str) -> Creator:
        if not bank_account_id:
            raise ValidationError("bank_account_id is required")

        def apply(creator):
            creator.bank_account_id = bank_account_id

        return self._mutate_creator(creator_id, apply)
