"""
Catalog Service (Application Layer)

Use Cases for managing providers and the services they publish
Following Clean Architecture / Hexagonal Architecture
"""

from contextlib import nullcontext
from typing import List, Optional

import pytz

from shared.config import SchedulingConfig
from shared.domain.entities import Actor, ActorRole, Provider, ServiceOffering
from shared.domain.repositories import IProviderLock, IProviderRepository
from shared.domain.exceptions import (
    EntityNotFoundError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationError,
)
from shared.utils import Logger, generate_id, utc_now


class ServiceCatalogService:
    """
    Application service for provider and service catalog operations

    Mutations require the provider's owner or an admin and run inside the
    provider lock, so concurrent writes of the provider record do not
    overwrite each other. Changing a service never touches existing
    bookings: they carry their own copy of the duration, name and price.
    """

    def __init__(
        self,
        provider_repository: IProviderRepository,
        default_auto_confirm: bool = SchedulingConfig.DEFAULT_AUTO_CONFIRM,
        provider_lock: Optional[IProviderLock] = None
    ):
        self.provider_repo = provider_repository
        self.provider_lock = provider_lock
        self.default_auto_confirm = default_auto_confirm
        self.logger = Logger()

    def register_provider(
        self,
        actor: Optional[Actor],
        name: str,
        timezone: str = "UTC",
        auto_confirm: Optional[bool] = None,
        owner_id: Optional[str] = None
    ) -> Provider:
        """
        Register a provider profile

        Provider accounts register for themselves; admins may register on
        behalf of `owner_id`.

        Raises:
            UnauthorizedError: Clients cannot register providers
            ValidationError: Missing name or unknown timezone
        """
        actor = self._require_actor(actor)
        if actor.role == ActorRole.PROVIDER:
            if owner_id and owner_id != actor.actor_id:
                raise UnauthorizedError("Provider accounts can only register themselves")
            owner_id = actor.actor_id
        elif actor.is_admin():
            if not owner_id:
                raise ValidationError("owner_id is required when registering on behalf of a user")
        else:
            raise UnauthorizedError(f"Role {actor.role.value} cannot register providers")

        if not name or not name.strip():
            raise ValidationError("Provider name is required")
        try:
            pytz.timezone(timezone)
        except pytz.UnknownTimeZoneError:
            raise ValidationError(f"Unknown timezone: {timezone}")

        provider = Provider(
            provider_id=generate_id('pro'),
            owner_id=owner_id,
            name=name.strip(),
            timezone=timezone,
            auto_confirm=self.default_auto_confirm if auto_confirm is None else auto_confirm,
            created_at=utc_now()
        )
        self.provider_repo.save(provider)

        self.logger.info(
            "Provider registered",
            provider_id=provider.provider_id,
            owner_id=owner_id,
            timezone=timezone,
            auto_confirm=provider.auto_confirm
        )
        return provider

    def add_service(
        self,
        actor: Optional[Actor],
        provider_id: str,
        name: str,
        duration_minutes: int,
        price: Optional[float] = None
    ) -> ServiceOffering:
        """
        Create new service

        Validates business rules before creating
        """
        with self._scope(provider_id):
            provider = self._get_owned_provider(actor, provider_id)

            service = ServiceOffering(
                service_id=generate_id('svc'),
                name=(name or "").strip(),
                duration_minutes=duration_minutes,
                price=price
            )
            provider.add_service(service)
            self.provider_repo.save(provider)

        self.logger.info(
            "Service created",
            provider_id=provider_id,
            service_id=service.service_id,
            duration_minutes=duration_minutes
        )
        return service

    def update_service(
        self,
        actor: Optional[Actor],
        provider_id: str,
        service_id: str,
        name: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        price: Optional[float] = None
    ) -> ServiceOffering:
        """
        Update existing service
        """
        with self._scope(provider_id):
            provider = self._get_owned_provider(actor, provider_id)
            service = self._get_service(provider, service_id)

            if name is not None:
                lowered = name.strip().lower()
                if any(s.service_id != service_id and s.name.strip().lower() == lowered for s in provider.services):
                    raise ValidationError(f"Service named '{name}' already exists")

            # Build the updated value first so a bad field leaves the service untouched
            updated = ServiceOffering(
                service_id=service.service_id,
                name=name.strip() if name is not None else service.name,
                duration_minutes=duration_minutes if duration_minutes is not None else service.duration_minutes,
                price=price if price is not None else service.price,
                active=service.active
            )
            provider.services[provider.services.index(service)] = updated
            self.provider_repo.save(provider)

        self.logger.info("Service updated", provider_id=provider_id, service_id=service_id)
        return updated

    def deactivate_service(
        self,
        actor: Optional[Actor],
        provider_id: str,
        service_id: str
    ) -> ServiceOffering:
        """Stop offering a service; existing bookings are unaffected"""
        with self._scope(provider_id):
            provider = self._get_owned_provider(actor, provider_id)
            service = self._get_service(provider, service_id)

            service.active = False
            self.provider_repo.save(provider)

        self.logger.info("Service deactivated", provider_id=provider_id, service_id=service_id)
        return service

    def set_auto_confirm(self, actor: Optional[Actor], provider_id: str, enabled: bool) -> Provider:
        with self._scope(provider_id):
            provider = self._get_owned_provider(actor, provider_id)
            provider.auto_confirm = bool(enabled)
            self.provider_repo.save(provider)

        self.logger.info("Auto-confirm policy changed", provider_id=provider_id, enabled=provider.auto_confirm)
        return provider

    def get_provider(self, provider_id: str) -> Provider:
        """
        Get specific provider by ID

        Raises:
            EntityNotFoundError: Provider doesn't exist
        """
        provider = self.provider_repo.get_by_id(provider_id)
        if not provider:
            raise EntityNotFoundError("Provider", provider_id)
        return provider

    def list_services(self, provider_id: str, include_inactive: bool = False) -> List[ServiceOffering]:
        provider = self.get_provider(provider_id)
        if include_inactive:
            return list(provider.services)
        return [s for s in provider.services if s.is_available()]

    def _scope(self, provider_id: str):
        if self.provider_lock is None:
            return nullcontext()
        return self.provider_lock.hold(provider_id)

    def _get_service(self, provider: Provider, service_id: str) -> ServiceOffering:
        service = provider.get_service(service_id)
        if not service:
            raise EntityNotFoundError("Service", service_id)
        return service

    def _get_owned_provider(self, actor: Optional[Actor], provider_id: str) -> Provider:
        actor = self._require_actor(actor)
        provider = self.get_provider(provider_id)
        if not (actor.is_admin() or provider.is_owned_by(actor.actor_id)):
            raise UnauthorizedError(f"Provider {provider_id} is not owned by {actor.actor_id}")
        return provider

    @staticmethod
    def _require_actor(actor: Optional[Actor]) -> Actor:
        if actor is None:
            raise UnauthenticatedError("Authentication required")
        return actor
