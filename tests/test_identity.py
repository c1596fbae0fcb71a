"""Tests for identity projection and claim helpers."""

import pytest

from aclauth.core.oidc.claims import AuthClaims, ClaimsKind, Identity
from aclauth.core.oidc.identity import IdentityProjector, new_identity
from aclauth.core.oidc.utils import claim_to_list, claim_to_string, extract_mapped_claims, lookup_claim
from aclauth.storage.models import AuthMethodConfig


def _config(**kwargs) -> AuthMethodConfig:
    return AuthMethodConfig(oidc_discovery_url="https://idp.example.com", oidc_client_id="client", **kwargs)


class TestIdentityProjector:
    """Tests for IdentityProjector."""

    def test_mapped_claim_value(self) -> None:
        config = _config(claim_mappings={"foo": "bar"})
        claims = AuthClaims(value={"foo": "hello"})

        identity = IdentityProjector().project(config, claims)

        assert identity.claim_mappings["value.foo"] == "hello"
        assert identity.claims is claims

    def test_declared_bind_names_always_present(self) -> None:
        config = _config(
            claim_mappings={"email": "user_email", "foo": "bar"},
            list_claim_mappings={"groups": "roles"},
        )

        identity = new_identity(config, AuthClaims())

        assert identity.claim_mappings == {
            "value.user_email": "",
            "value.bar": "",
            "value.roles": "",
        }

    def test_list_values_joined(self) -> None:
        config = _config(list_claim_mappings={"groups": "groups"})
        claims = AuthClaims(value={"groups": ("dev", "ops")})

        identity = new_identity(config, claims)

        assert identity.claim_mappings["value.groups"] == "dev,ops"

    def test_projection_is_pure(self) -> None:
        config = _config(claim_mappings={"foo": "bar"}, list_claim_mappings={"groups": "roles"})
        claims = AuthClaims(value={"foo": "hello", "groups": ("a", "b")})
        projector = IdentityProjector()

        first = projector.project(config, claims)
        second = projector.project(config, claims)

        assert first == second
        assert dict(claims.value) == {"foo": "hello", "groups": ("a", "b")}

    def test_identity_is_read_only(self) -> None:
        identity = new_identity(_config(claim_mappings={"foo": "bar"}), AuthClaims(value={"foo": "x"}))

        with pytest.raises(TypeError):
            identity.claim_mappings["value.foo"] = "y"  # type: ignore[index]


class TestAuthClaims:
    """Tests for the claim set data model."""

    def test_kind(self) -> None:
        assert AuthClaims.kind == ClaimsKind.OIDC
        assert Identity(claims=AuthClaims()).claims.kind == "oidc"

    def test_value_is_read_only(self) -> None:
        claims = AuthClaims(value={"foo": "bar"})
        with pytest.raises(TypeError):
            claims.value["foo"] = "baz"  # type: ignore[index]

    def test_empty_claims_are_falsy(self) -> None:
        assert not AuthClaims()
        assert AuthClaims(raw={"sub": "user"})

    def test_to_dict(self) -> None:
        claims = AuthClaims(value={"groups": ("a", "b")}, subject="user", audience=("client",))
        data = claims.to_dict()

        assert data["kind"] == "oidc"
        assert data["value"] == {"groups": ["a", "b"]}
        assert data["audience"] == ["client"]
        assert data["expires_at"] is None


class TestClaimHelpers:
    """Tests for claim coercion and lookup."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("text", "text"),
            (True, "true"),
            (False, "false"),
            (42, "42"),
            (None, ""),
            (["a", 1, True], "a,1,true"),
            ({"b": 1, "a": 2}, '{"a":2,"b":1}'),
        ],
    )
    def test_claim_to_string(self, value, expected: str) -> None:
        assert claim_to_string(value) == expected

    def test_claim_to_list(self) -> None:
        assert claim_to_list(["a", 2]) == ("a", "2")
        assert claim_to_list("solo") == ("solo",)
        assert claim_to_list(None) == ()

    def test_lookup_claim_pointer(self) -> None:
        claims = {
            "address": {"country": "NL"},
            "groups": ["dev", "ops"],
            "a/b": {"c~d": "escaped"},
        }

        assert lookup_claim(claims, "/address/country") == "NL"
        assert lookup_claim(claims, "/groups/1") == "ops"
        assert lookup_claim(claims, "/a~1b/c~0d") == "escaped"
        assert lookup_claim(claims, "/groups/5") is None
        assert lookup_claim(claims, "/address/street") is None
        assert lookup_claim(claims, "address") == {"country": "NL"}

    def test_extract_list_wins_over_scalar(self) -> None:
        claims = {"groups": ["dev", "ops"], "email": "u@example.com"}
        value = extract_mapped_claims(
            claims,
            claim_mappings={"groups": "g", "email": "email", "missing": "m"},
            list_claim_mappings={"groups": "groups"},
        )

        assert value == {"groups": ("dev", "ops"), "email": "u@example.com"}
