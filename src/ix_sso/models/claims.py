"""Identity claims received from the identity provider on login."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class IdentityClaims(BaseModel):
    """
    Verified identity claims for one authentication event.

    Accepts raw OIDC userinfo (``sub``, ``realm_access``, ``resource_access``)
    as well as the normalised field names. ``subject`` and ``email`` are
    optional at parse time so that their absence is reported by the
    provisioning service rather than as a validation error.

    Examples:
        IdentityClaims.model_validate({
            "sub": "f:1234",
            "email": "jane.doe@example.com",
            "realm_access": {"roles": ["sales"]},
            "resource_access": {"ix-admin": {"roles": ["admin"]}},
        })
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    subject: str | None = Field(
        None,
        validation_alias=AliasChoices("subject", "sub"),
        description="Stable IdP user id",
    )
    email: str | None = Field(None, description="Email address")
    email_verified: bool | None = Field(None, description="Whether the IdP verified the email")
    name: str | None = Field(None, description="Full name")
    given_name: str | None = Field(None, description="First name")
    family_name: str | None = Field(None, description="Last name")
    preferred_username: str | None = Field(None, description="Username at the IdP")

    realm_roles: list[str] = Field(default_factory=list, description="Realm-level roles")
    client_roles: dict[str, list[str]] = Field(
        default_factory=dict, description="Client id -> client-level roles"
    )
    roles: list[str] = Field(default_factory=list, description="Roles from a flat roles claim")

    @model_validator(mode="before")
    @classmethod
    def normalize_role_claims(cls, data: Any) -> Any:
        """Fold Keycloak's realm_access / resource_access into flat fields."""
        if not isinstance(data, dict):
            return data

        data = dict(data)

        realm_access = data.pop("realm_access", None)
        if isinstance(realm_access, dict) and "realm_roles" not in data:
            data["realm_roles"] = list(realm_access.get("roles") or [])

        resource_access = data.pop("resource_access", None)
        if isinstance(resource_access, dict) and "client_roles" not in data:
            data["client_roles"] = {
                client_id: list((access or {}).get("roles") or [])
                for client_id, access in resource_access.items()
            }

        if data.get("roles") is None:
            data.pop("roles", None)

        return data

    def idp_roles(self, client_id: str | None = None) -> list[str]:
        """
        All IdP roles in a stable order without duplicates.

        Order: realm roles, client roles (``client_id`` first, then the other
        clients in claim order), then the flat roles claim.

        Args:
            client_id: Client whose roles take precedence

        Returns:
            Ordered, de-duplicated list of role names
        """
        ordered: list[str] = list(self.realm_roles)

        if client_id and client_id in self.client_roles:
            ordered.extend(self.client_roles[client_id])
        for other_client, client_roles in self.client_roles.items():
            if other_client != client_id:
                ordered.extend(client_roles)

        ordered.extend(self.roles)
        return list(dict.fromkeys(role for role in ordered if role))

    def to_log_context(self) -> dict[str, Any]:
        """Non-sensitive subset for log events."""
        return {
            "subject": self.subject,
            "email": self.email,
            "preferred_username": self.preferred_username,
            "email_verified": self.email_verified,
        }
