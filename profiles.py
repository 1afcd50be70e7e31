"""
User profiles: onboarding stub, owner-only updates and discovery.
"""
import logging
from typing import Any, Dict, List, Optional

from database import DocumentStore, id_candidates, now_utc
from errors import NotFound, ValidationFailure
from schemas import DiscoverFilters, ProfileUpdate, User, UserOut

logger = logging.getLogger(__name__)

COLLECTION = "user"


def to_public(user: Dict[str, Any]) -> UserOut:
    data = {k: v for k, v in user.items() if k != "password" and v is not None}
    return UserOut(**data)


def needs_onboarding(user: Dict[str, Any]) -> bool:
    return not user.get("onboardingCompleted", False)


class ProfileService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def create_stub(self, name: Optional[str], email: Optional[str], password: Optional[str] = None,
                    photo_url: Optional[str] = None) -> Dict[str, Any]:
        """First sign-in: a user record that still needs onboarding."""
        doc = User(
            name=name,
            email=email,
            password=password,
            photoUrl=photo_url,
            onboardingCompleted=False,
            createdAt=now_utc(),
        ).model_dump(exclude_none=True)
        new_id = self.store.create_document(COLLECTION, doc)
        logger.info("Created user stub %s", new_id)
        return self.store.get_document(COLLECTION, new_id)

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get_document(COLLECTION, user_id)

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.store.find_one(COLLECTION, {"email": email})

    def update_profile(self, user_id: str, body: ProfileUpdate) -> Dict[str, Any]:
        update = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
        if "name" in update and not update["name"].strip():
            raise ValidationFailure("Name is required")
        update["onboardingCompleted"] = True
        if not self.store.update_document(COLLECTION, user_id, update):
            raise NotFound("User not found")
        return self.store.get_document(COLLECTION, user_id)

    def set_photo(self, user_id: str, photo_url: str) -> None:
        self.store.update_document(COLLECTION, user_id, {"photoUrl": photo_url})

    def discover(self, principal_id: str, filters: Optional[DiscoverFilters] = None) -> List[Dict[str, Any]]:
        filters = filters or DiscoverFilters()
        query: Dict[str, Any] = {"_id": {"$nin": id_candidates(principal_id)}}
        if filters.projectInterest and filters.projectInterest != "all":
            query["projectInterests"] = filters.projectInterest
        if filters.teamStatus and filters.teamStatus != "all":
            query["teamStatus"] = filters.teamStatus
        if filters.experienceLevel and filters.experienceLevel.lower() != "all":
            query["experienceLevel"] = filters.experienceLevel.lower()
        return self.store.get_documents(COLLECTION, query)
