"""Profile bootstrap: self-healing creation of an actor's profile and organization."""

from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from crmcore.auth.constants import FREE_EMAIL_DOMAINS, Role
from crmcore.auth.schemas import Profile, User
from crmcore.crm.constants import ORGANIZATIONS_COLLECTION, PROFILES_COLLECTION
from crmcore.db.data_service import DataService
from crmcore.exceptions import ConflictError, CRMError, UpstreamError
from crmcore.utils.logger import logger


class ProfileBootstrapper:
    """Reads, creates and updates actor profiles."""

    def __init__(self, data_service: DataService):
        """
        Initialize the bootstrapper.

        Args:
            data_service: Backend data service
        """
        self.data_service = data_service

    def _to_profile(self, row: dict[str, Any]) -> Profile:
        try:
            return Profile.model_validate(row)
        except ValidationError as e:
            raise UpstreamError("Malformed profile row", original_error=e) from e

    async def get_profile(self, user_id: str) -> Profile | None:
        row = await self.data_service.select_one(PROFILES_COLLECTION, {"id": user_id})
        return self._to_profile(row) if row else None

    async def ensure_profile(self, user: User) -> Profile:
        """
        Get or create the profile of an authenticated user.

        - If the profile exists, return it
        - Otherwise create an organization and an owner profile from the
          identity metadata attached to the user

        Two concurrent bootstraps for the same user are resolved by the
        profile's primary key: the loser sees a conflict, re-reads the winner's
        row and discards the organization it created.

        Args:
            user: Authenticated identity

        Returns:
            The existing or newly created profile

        Raises:
            UpstreamError: If the backend fails. The organization created for
                the attempt is removed again.
        """
        existing = await self.get_profile(user.id)
        if existing:
            return existing

        metadata = user.user_metadata
        org_name = self._organization_name(user)
        org_row = await self.data_service.insert(
            ORGANIZATIONS_COLLECTION, {"name": org_name}
        )
        logger.info(
            "Created new organization for user",
            user_id=user.id,
            organization_id=org_row["id"],
            organization_name=org_name,
        )

        values = {
            "id": user.id,
            "email": user.email,
            "first_name": metadata.get("first_name") or None,
            "last_name": metadata.get("last_name") or None,
            "avatar_url": metadata.get("avatar_url") or None,
            "role": Role.OWNER.value,
            "organization_id": org_row["id"],
        }
        try:
            row = await self.data_service.insert(PROFILES_COLLECTION, values)
        except ConflictError:
            # Race condition: another bootstrap created the profile between our check and insert
            logger.info(
                "Profile creation race condition detected, retrying lookup",
                user_id=user.id,
            )
            try:
                existing = await self.get_profile(user.id)
            finally:
                await self._discard_organization(org_row["id"])
            if existing is None:
                logger.error("Profile still not found after conflict", user_id=user.id)
                raise
            return existing
        except CRMError:
            # The organization is only kept alongside its owner profile
            await self._discard_organization(org_row["id"])
            raise

        logger.info("Bootstrapped profile", user_id=user.id, organization_id=org_row["id"])
        return self._to_profile(row)

    async def update_profile(self, user_id: str, values: dict[str, Any]) -> Profile | None:
        """
        Update a profile.

        Returns:
            Updated profile or None if not found
        """
        rows = await self.data_service.update(
            PROFILES_COLLECTION,
            {"id": user_id},
            {**values, "updated_at": datetime.now(UTC)},
        )
        return self._to_profile(rows[0]) if rows else None

    async def _discard_organization(self, organization_id: str) -> None:
        try:
            await self.data_service.delete(
                ORGANIZATIONS_COLLECTION, {"id": organization_id}
            )
        except CRMError as e:
            logger.warning(
                "Could not remove orphaned organization",
                organization_id=organization_id,
                error=str(e),
            )

    def _organization_name(self, user: User) -> str:
        """
        Pick a name for a new user's organization.

        Explicit metadata wins, then the email domain (unless it is a
        consumer mailbox), then the user's first name.
        """
        metadata = user.user_metadata
        for key in ("organization_name", "company"):
            value = metadata.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()

        domain = user.email.rpartition("@")[2].lower()
        if domain and "@" in user.email and domain not in FREE_EMAIL_DOMAINS:
            return self._extract_org_name_from_domain(domain)

        first_name = metadata.get("first_name") or user.email.partition("@")[0]
        return f"{first_name}'s Organization" if first_name else "My Organization"

    def _extract_org_name_from_domain(self, domain: str) -> str:
        """
        Extract organization name from email domain.

        Examples:
            "robinhoodroofingutah.com" -> "Robinhoodroofingutah"
            "acme.io" -> "Acme"
            "x.com" -> "X"

        Args:
            domain: Email domain

        Returns:
            Organization display name
        """
        # Remove TLD
        parts = domain.split(".")
        if len(parts) > 1:
            name_part = parts[0]
        else:
            name_part = domain

        # Simple capitalization
        return name_part.capitalize()
