"""Data model for the relay: endpoints, management requests, inbound events."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# The bundled UI and the persisted file both use ``is_active``; the
# management API also accepts plain ``active`` on input.
_ACTIVE_FIELD = dict(
    alias="is_active",
    validation_alias=AliasChoices("is_active", "active"),
)


class Endpoint(BaseModel):
    """A registered downstream receiver."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    url: str
    name: str
    active: bool = Field(default=False, **_ACTIVE_FIELD)


class CreateEndpointRequest(BaseModel):
    """Body of ``POST /endpoints``."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    name: str
    active: bool = Field(default=False, **_ACTIVE_FIELD)


class EndpointStatusUpdate(BaseModel):
    """Body of ``PUT /endpoints/{id}/status``."""

    model_config = ConfigDict(populate_by_name=True)

    active: bool = Field(**_ACTIVE_FIELD)


@dataclass(frozen=True)
class InboundEvent:
    """A single webhook occurrence captured at ingress.

    ``body`` is the raw request payload and is forwarded byte-for-byte.
    ``headers`` holds the inbound request headers in arrival order.
    """

    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    def clone(self) -> InboundEvent:
        """Return an independent copy for one outbound delivery."""
        return InboundEvent(body=self.body, headers=dict(self.headers))


@dataclass(frozen=True)
class StaticRoute:
    """Fixed mapping from a service key to one destination URL."""

    key: str
    url: str

    def as_endpoint(self) -> Endpoint:
        return Endpoint(
            id=self.key,
            url=self.url,
            name=f"Static {self.key} endpoint",
            active=True,
        )
