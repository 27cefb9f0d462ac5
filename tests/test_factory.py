"""
tests/test_factory.py
Unit tests for admingen.factory and the applicator stages.

Runtime types are compiled from small model hashes through the
``build_type`` fixture and exercised without a database: writers and
deleters are plain callables.

Tests cover:
- Validations, transforms, defaults and computed fields
- Associations (required belongs_to, foreign key and polymorphic assignment)
- Events dispatched through the event bus
- Scopes, attachments, nested attributes
- External and service accessors, custom fields, label method
- Build error wrapping and schema freezing
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import pytest

from admingen.custom_fields import CustomFieldDefinition, CustomFieldRegistry
from admingen.events import EventBus, EventContext
from admingen.exceptions import ConfigurationError, RecordInvalid
from admingen.factory import ModelFactory
from admingen.loader import MetadataSet
from admingen.services import ServiceRegistry, current_user

BuildType = Callable[..., type]


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class _TakenValues:
    """Uniqueness checker answering from a fixed set of values."""

    def __init__(self, *values: Any) -> None:
        self.values = set(values)
        self.calls: List[Tuple[Any, ...]] = []

    def exists(
        self,
        model: str,
        field: str,
        value: Any,
        scope: Mapping[str, Any],
        exclude_id: Any,
    ) -> bool:
        self.calls.append((model, field, value, dict(scope), exclude_id))
        return value in self.values


class _NoSpam:
    def validate(self, record: Any, options: Mapping[str, Any]) -> None:
        if "spam" in (record.title or ""):
            record.errors.add("title", options.get("msg", "looks like spam"))


class _LineTotal:
    def compute(self, record: Any) -> Any:
        return (record.quantity or 0) * (record.unit_price or 0)


class _RecordingQuery:
    def __init__(self) -> None:
        self.calls: List[Tuple[str, Any]] = []

    def where(self, **conditions: Any) -> "_RecordingQuery":
        self.calls.append(("where", conditions))
        return self

    def where_not(self, **conditions: Any) -> "_RecordingQuery":
        self.calls.append(("where_not", conditions))
        return self

    def order(self, **ordering: Any) -> "_RecordingQuery":
        self.calls.append(("order", ordering))
        return self

    def limit(self, count: int) -> "_RecordingQuery":
        self.calls.append(("limit", count))
        return self


class _NicknameMixin:
    @property
    def nickname(self) -> Optional[str]:
        return self._transient.get("nick")  # type: ignore[attr-defined]

    @nickname.setter
    def nickname(self, value: Optional[str]) -> None:
        self._transient["nick"] = value  # type: ignore[attr-defined]


def _writer(new_id: Any = None) -> Callable[[Any], Any]:
    def write(record: Any) -> Any:
        return new_id

    return write


DEAL: Dict[str, Any] = {
    "name": "deal",
    "fields": [
        {
            "name": "title",
            "type": "string",
            "transforms": ["strip"],
            "validations": ["presence", {"type": "length", "maximum": 20}],
        },
        {"name": "stage", "type": "enum", "enum_values": ["lead", "won", "lost"], "default": "lead"},
    ],
}


# ---------------------------------------------------------------------------
# Validations & transforms
# ---------------------------------------------------------------------------


class TestValidations:
    def test_transform_on_assignment(self, build_type: BuildType) -> None:
        Deal = build_type(DEAL)
        assert Deal(title="  Renewal  ").title == "Renewal"

    def test_presence_and_length(self, build_type: BuildType) -> None:
        Deal = build_type(DEAL)
        blank = Deal(title="   ")
        assert not blank.valid()
        assert blank.errors.on("title") == ["can't be blank"]
        long = Deal(title="x" * 21)
        assert not long.valid()
        assert long.errors.on("title") == ["is too long (maximum is 20 characters)"]
        assert Deal(title="ok").valid()

    def test_enum_membership_and_default(self, build_type: BuildType) -> None:
        Deal = build_type(DEAL)
        assert Deal(title="a").stage == "lead"
        bogus = Deal(title="a", stage="bogus")
        assert not bogus.valid()
        assert bogus.errors.on("stage") == ["is not included in the list"]

    def test_numericality(self, build_type: BuildType) -> None:
        Item = build_type(
            {
                "name": "item",
                "fields": [
                    {
                        "name": "amount",
                        "type": "decimal",
                        "validations": [{"type": "numericality", "greater_than": 0}],
                    }
                ],
            }
        )
        missing = Item()
        assert not missing.valid()
        assert missing.errors.on("amount") == ["is not a number"]
        zero = Item(amount=0)
        zero.valid()
        assert zero.errors.on("amount") == ["must be greater than 0"]
        text = Item(amount="abc")
        text.valid()
        assert text.errors.on("amount") == ["is not a number"]

    def test_numericality_allow_nil(self, build_type: BuildType) -> None:
        Item = build_type(
            {
                "name": "item",
                "fields": [
                    {
                        "name": "amount",
                        "type": "decimal",
                        "validations": [
                            {"type": "numericality", "greater_than": 0, "allow_nil": True}
                        ],
                    }
                ],
            }
        )
        assert Item().valid()
        negative = Item(amount=-1)
        negative.valid()
        assert negative.errors.on("amount") == ["must be greater than 0"]

    def test_format_inclusion_exclusion(self, build_type: BuildType) -> None:
        Account = build_type(
            {
                "name": "account",
                "fields": [
                    {"name": "code", "type": "string", "validations": [{"type": "format", "with": "^[A-Z]+$"}]},
                    {"name": "tier", "type": "string", "validations": [{"type": "inclusion", "in": ["free", "pro"]}]},
                    {"name": "login", "type": "string", "validations": [{"type": "exclusion", "in": ["admin"]}]},
                ],
            }
        )
        account = Account(code="abc", tier="gold", login="admin")
        assert not account.valid()
        assert account.errors.to_dict() == {
            "code": ["is invalid"],
            "tier": ["is not included in the list"],
            "login": ["is reserved"],
        }
        assert Account(code="ABC", tier="pro", login="ann").valid()

    def test_confirmation(self, build_type: BuildType) -> None:
        User = build_type(
            {
                "name": "user",
                "fields": [{"name": "password", "type": "string", "validations": ["confirmation"]}],
            }
        )
        mismatch = User(password="a", password_confirmation="b")
        assert not mismatch.valid()
        assert mismatch.errors.on("password") == ["doesn't match Password confirmation"]
        assert User(password="a", password_confirmation="a").valid()
        assert User(password="a").valid()

    def test_comparison(self, build_type: BuildType) -> None:
        Period = build_type(
            {
                "name": "period",
                "fields": [
                    {"name": "starts_on", "type": "integer"},
                    {
                        "name": "ends_on",
                        "type": "integer",
                        "validations": [{"type": "comparison", "operator": "gt", "field_ref": "starts_on"}],
                    },
                ],
            }
        )
        backwards = Period(starts_on=5, ends_on=3)
        assert not backwards.valid()
        assert backwards.errors.on("ends_on") == ["must be greater than starts_on"]
        assert Period(starts_on=1, ends_on=3).valid()

    def test_conditional_validation_and_message(self, build_type: BuildType) -> None:
        Deal = build_type(
            {
                "name": "deal",
                "fields": [
                    {"name": "stage", "type": "enum", "enum_values": ["lead", "lost"]},
                    {
                        "name": "lost_reason",
                        "type": "string",
                        "validations": [
                            {"type": "presence", "when": {"field": "stage", "value": "lost"}, "message": "is required"}
                        ],
                    },
                ],
            }
        )
        lost = Deal(stage="lost")
        assert not lost.valid()
        assert lost.errors.on("lost_reason") == ["is required"]
        assert Deal(stage="lead").valid()

    def test_uniqueness(self, build_type: BuildType) -> None:
        checker = _TakenValues("ann@example.com")
        User = build_type(
            {
                "name": "user",
                "fields": [
                    {
                        "name": "email",
                        "type": "string",
                        "validations": [{"type": "uniqueness", "scope": "company_id", "case_sensitive": False}],
                    },
                    {"name": "company_id", "type": "integer"},
                ],
            },
            uniqueness_checker=checker,
        )
        user = User(email="Ann@Example.com", company_id=2)
        assert not user.valid()
        assert user.errors.on("email") == ["has already been taken"]
        assert checker.calls == [("user", "email", "ann@example.com", {"company_id": 2}, None)]

    def test_service_validation(self, build_type: BuildType, services: ServiceRegistry) -> None:
        services.register("validators", "no_spam", _NoSpam())
        Post = build_type(
            {
                "name": "post",
                "fields": [
                    {"name": "title", "type": "string", "validations": [{"type": "service", "service": "no_spam", "msg": "spam!"}]}
                ],
            }
        )
        post = Post(title="buy spam now")
        assert not post.valid()
        assert post.errors.on("title") == ["spam!"]

    def test_model_level_validation_with_target(self, build_type: BuildType) -> None:
        Deal = build_type(
            {
                "name": "deal",
                "fields": [{"name": "title", "type": "string"}],
                "validations": [{"type": "presence", "target_field": "title"}],
            }
        )
        deal = Deal()
        assert not deal.valid()
        assert deal.errors.on("title") == ["can't be blank"]

    def test_model_level_validation_needs_target(self, build_type: BuildType) -> None:
        with pytest.raises(ConfigurationError, match="requires 'target_field'"):
            build_type({"name": "deal", "validations": ["presence"]})

    def test_unimportable_validator_class(self, build_type: BuildType) -> None:
        data = {
            "name": "deal",
            "fields": [
                {"name": "title", "type": "string", "validations": [{"type": "custom", "validator_class": "nowhere.Check"}]}
            ],
        }
        with pytest.raises(ConfigurationError, match="Cannot import validator_class 'nowhere.Check'"):
            build_type(data)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestSave:
    def test_save_assigns_id_and_timestamps(self, build_type: BuildType) -> None:
        Deal = build_type(DEAL)
        written: List[Dict[str, Any]] = []

        def writer(record: Any) -> int:
            written.append(record.column_values())
            return 7

        deal = Deal(title="Renewal")
        assert deal.save(writer) is True
        assert deal.id == 7
        assert deal.persisted
        assert deal.created_at is not None
        assert deal.updated_at == deal.created_at
        assert deal.changes == {}
        assert set(written[0]) == {"id", "title", "stage", "created_at", "updated_at"}

    def test_invalid_save(self, build_type: BuildType) -> None:
        Deal = build_type(DEAL)
        deal = Deal()
        assert deal.save(_writer(1)) is False
        assert deal.new_record
        with pytest.raises(RecordInvalid, match="Validation failed: title can't be blank"):
            deal.save(_writer(1), strict=True)

    def test_failed_save_restores_values(self, build_type: BuildType) -> None:
        Deal = build_type(DEAL)
        deal = Deal.load(id=3, title="Old", stage="lead", created_at=None, updated_at=None)
        deal.title = ""
        assert deal.save(_writer()) is False
        assert deal.updated_at is None
        assert deal.changes == {"title": ("Old", "")}
        assert deal.errors.on("title") == ["can't be blank"]

        fresh = Deal()
        assert fresh.save(_writer(1)) is False
        assert fresh.created_at is None
        assert fresh.updated_at is None

    def test_loaded_record_tracks_changes(self, build_type: BuildType) -> None:
        Deal = build_type(DEAL)
        deal = Deal.load(id=3, title="Old", stage="lead")
        assert not deal.new_record
        deal.title = "New"
        assert deal.changes == {"title": ("Old", "New")}
        assert deal.changed("title")
        assert deal.was("title") == "Old"
        assert deal.save(_writer()) is True
        assert deal.id == 3
        assert deal.changes == {}

    def test_unknown_attribute(self, build_type: BuildType) -> None:
        Deal = build_type(DEAL)
        with pytest.raises(AttributeError, match="has no attribute 'bogus'"):
            Deal(bogus=1)

    def test_timestamps_can_be_disabled(self, build_type: BuildType) -> None:
        Tag = build_type({"name": "tag", "fields": [{"name": "name", "type": "string"}], "options": {"timestamps": False}})
        assert Tag.__schema__.columns == ("id", "name")


# ---------------------------------------------------------------------------
# Defaults & computed fields
# ---------------------------------------------------------------------------


class TestDefaultsAndComputed:
    def test_template_default(self, build_type: BuildType) -> None:
        Page = build_type(
            {
                "name": "page",
                "fields": [
                    {"name": "title", "type": "string"},
                    {"name": "heading", "type": "string", "default": "About {title}"},
                ],
            }
        )
        assert Page(title="us").heading == "About us"
        assert Page(title="us", heading="Custom").heading == "Custom"

    def test_service_default(self, build_type: BuildType) -> None:
        Note = build_type(
            {"name": "note", "fields": [{"name": "owner_id", "type": "integer", "default": {"service": "current_user_id"}}]}
        )
        with current_user(5):
            assert Note().owner_id == 5
        assert Note().owner_id is None

    def test_unknown_default_service(self, build_type: BuildType) -> None:
        with pytest.raises(ConfigurationError, match="defaults service 'nope' not found"):
            build_type({"name": "note", "fields": [{"name": "a", "type": "string", "default": {"service": "nope"}}]})

    def test_computed_before_save(self, build_type: BuildType) -> None:
        Person = build_type(
            {
                "name": "person",
                "fields": [
                    {"name": "first_name", "type": "string"},
                    {"name": "last_name", "type": "string"},
                    {"name": "full_name", "type": "string", "computed": "{first_name} {last_name}"},
                ],
            }
        )
        person = Person(first_name="Ann", last_name="Lee")
        assert person.full_name is None
        person.save(_writer(1))
        assert person.full_name == "Ann Lee"

    def test_computed_service(self, build_type: BuildType, services: ServiceRegistry) -> None:
        services.register("computed", "line_total", _LineTotal())
        Line = build_type(
            {
                "name": "line",
                "fields": [
                    {"name": "quantity", "type": "integer"},
                    {"name": "unit_price", "type": "integer"},
                    {"name": "total", "type": "integer", "computed": {"service": "line_total"}},
                ],
            }
        )
        line = Line(quantity=3, unit_price=5)
        assert line.save(_writer(1)) is True
        assert line.total == 15

    def test_computed_value_kept_when_save_fails(self, build_type: BuildType) -> None:
        Person = build_type(
            {
                "name": "person",
                "fields": [
                    {"name": "first_name", "type": "string", "validations": ["presence"]},
                    {"name": "full_name", "type": "string", "computed": "{first_name}!"},
                ],
            }
        )
        person = Person.load(id=1, first_name="Ann", full_name="Ann!")
        person.first_name = None
        assert person.save(_writer()) is False
        assert person.full_name == "Ann!"


# ---------------------------------------------------------------------------
# Associations
# ---------------------------------------------------------------------------


COMPANY: Dict[str, Any] = {
    "name": "company",
    "fields": [{"name": "name", "type": "string"}],
    "associations": [
        {
            "type": "has_many",
            "name": "contacts",
            "target_model": "contact",
            "foreign_key": "company_id",
            "nested_attributes": {"reject_if": "all_blank", "limit": 2},
        }
    ],
    "options": {"label_method": "name"},
}


class TestAssociations:
    def test_required_belongs_to(self, build_type: BuildType) -> None:
        Contact = build_type(
            {"name": "contact", "associations": [{"type": "belongs_to", "name": "company", "target_model": "company"}]}
        )
        orphan = Contact()
        assert not orphan.valid()
        assert orphan.errors.on("company") == ["must exist"]
        assert Contact(company_id=4).valid()

    def test_assigning_a_record_sets_the_foreign_key(self, build_type: BuildType) -> None:
        Company = build_type(COMPANY)
        Contact = build_type(
            {"name": "contact", "associations": [{"type": "belongs_to", "name": "company", "target_model": "company"}]}
        )
        acme = Company.load(id=3, name="Acme")
        contact = Contact(company=acme)
        assert contact.company_id == 3
        assert contact.company is acme
        assert contact.valid()

    def test_polymorphic_assignment(self, build_type: BuildType) -> None:
        Company = build_type(COMPANY)
        Comment = build_type(
            {"name": "comment", "associations": [{"type": "belongs_to", "name": "commentable", "polymorphic": True}]}
        )
        comment = Comment(commentable=Company.load(id=9))
        assert comment.commentable_id == 9
        assert comment.commentable_type == "company"
        assert comment.valid()

    def test_has_many_defaults_to_empty(self, build_type: BuildType) -> None:
        Company = build_type(COMPANY)
        assert Company().contacts == []

    def test_unknown_through(self, build_type: BuildType) -> None:
        data = {
            "name": "post",
            "associations": [{"type": "has_many", "name": "tags", "target_model": "tag", "through": "taggings"}],
        }
        with pytest.raises(ConfigurationError, match="through association 'taggings' is not defined"):
            build_type(data)

    def test_nested_attributes(self, build_type: BuildType) -> None:
        Company = build_type(COMPANY)
        company = Company(name="Acme")
        company.assign_nested(
            "contacts",
            [{"first_name": ""}, {"first_name": "Ann", "_destroy": True}, {"first_name": "Bo"}],
        )
        assert company.nested_changes["contacts"] == [{"first_name": "Ann"}, {"first_name": "Bo"}]
        assert not company.errors

    def test_nested_limit(self, build_type: BuildType) -> None:
        company = build_type(COMPANY)(name="Acme")
        company.assign_nested("contacts", [{"first_name": "A"}, {"first_name": "B"}, {"first_name": "C"}])
        assert company.errors.on("contacts") == ["too many records (maximum is 2)"]

    def test_nested_requires_opt_in(self, build_type: BuildType) -> None:
        Contact = build_type(
            {"name": "contact", "associations": [{"type": "belongs_to", "name": "company", "target_model": "company"}]}
        )
        with pytest.raises(KeyError):
            Contact().assign_nested("company", [{"name": "x"}])


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEvents:
    def test_lifecycle_and_field_change(self, build_type: BuildType) -> None:
        bus = EventBus()
        seen: List[EventContext] = []
        bus.subscribe("deal", "after_create", seen.append)
        bus.subscribe("deal", "deal_won", seen.append)
        data = dict(DEAL, events=[
            {"name": "after_create"},
            {"name": "deal_won", "field": "stage", "condition": {"field": "stage", "value": "won"}},
        ])
        Deal = build_type(data, event_bus=bus)

        deal = Deal(title="Renewal")
        deal.save(_writer(1))
        assert [c.event for c in seen] == ["after_create"]

        deal.stage = "won"
        deal.save(_writer())
        assert [c.event for c in seen] == ["after_create", "deal_won"]
        assert seen[1].old_value() == "lead"
        assert seen[1].new_value() == "won"

    def test_destroy_hooks(self, build_type: BuildType) -> None:
        bus = EventBus()
        seen: List[str] = []
        bus.subscribe("deal", "before_destroy", lambda ctx: seen.append(ctx.event))
        bus.subscribe("deal", "after_destroy", lambda ctx: seen.append(ctx.event))
        Deal = build_type(
            dict(DEAL, events=[{"name": "before_destroy"}, {"name": "after_destroy"}]), event_bus=bus
        )
        deal = Deal.load(id=1, title="a")
        deleted: List[Any] = []
        deal.destroy(deleted.append)
        assert deleted == [deal]
        assert deal.destroyed and not deal.persisted
        assert seen == ["before_destroy", "after_destroy"]

    def test_watched_field_must_exist(self, build_type: BuildType) -> None:
        data = dict(DEAL, events=[{"name": "price_changed", "field": "price"}])
        with pytest.raises(ConfigurationError, match="watched field 'price' is not defined"):
            build_type(data)


# ---------------------------------------------------------------------------
# Scopes & attachments
# ---------------------------------------------------------------------------


class TestScopesAndAttachments:
    def test_scope_applies_to_query(self, build_type: BuildType) -> None:
        data = dict(DEAL, scopes=[
            {"name": "open", "where_not": {"stage": ["won", "lost"]}, "order": {"title": "asc"}, "limit": 5},
            {"name": "mine", "type": "custom"},
        ])
        Deal = build_type(data)
        query = Deal.scope("open").apply(_RecordingQuery())
        assert query.calls == [
            ("where_not", {"stage": ["won", "lost"]}),
            ("order", {"title": "asc"}),
            ("limit", 5),
        ]
        with pytest.raises(KeyError, match="has no scope 'mine'"):
            Deal.scope("mine")

    def test_attachment_constraints(self, build_type: BuildType) -> None:
        Profile = build_type(
            {
                "name": "profile",
                "fields": [
                    {"name": "photo", "type": "attachment", "attachment": {"max_size": "1KB", "content_types": ["image/*"]}},
                    {"name": "files", "type": "attachment", "attachment": {"multiple": True, "max_files": 2}},
                ],
            }
        )
        assert "photo" not in Profile.__schema__.columns
        profile = Profile(
            photo={"size": 2048, "content_type": "text/plain"},
            files=[{"size": 1}, {"size": 2}, {"size": 3}],
        )
        assert not profile.valid()
        assert profile.errors.on("photo") == ["is too large (maximum is 1KB)", "has an invalid content type"]
        assert profile.errors.on("files") == ["has too many files (maximum is 2)"]
        assert Profile(photo={"size": 10, "content_type": "image/png"}).valid()

    def test_invalid_attachment_size(self, build_type: BuildType) -> None:
        data = {"name": "profile", "fields": [{"name": "photo", "type": "attachment", "attachment": {"max_size": "huge"}}]}
        with pytest.raises(ConfigurationError, match="Failed to build model 'profile' \\(attachments\\)"):
            build_type(data)


# ---------------------------------------------------------------------------
# Accessors, custom fields, label
# ---------------------------------------------------------------------------


class TestAccessors:
    EXTERNAL: Dict[str, Any] = {
        "name": "person",
        "fields": [{"name": "nickname", "type": "string", "source": "external"}],
    }

    def test_external_field_uses_host_mixin(self, build_type: BuildType) -> None:
        Person = build_type(self.EXTERNAL, host_mixins={"person": _NicknameMixin})
        person = Person(nickname="Al")
        assert person.nickname == "Al"
        assert "nickname" not in Person.__schema__.columns

    def test_external_field_without_accessors(self, build_type: BuildType) -> None:
        with pytest.raises(
            ConfigurationError,
            match="external field\\(s\\) without getter and setter: nickname",
        ):
            build_type(self.EXTERNAL)

    def test_service_accessor(self, build_type: BuildType) -> None:
        Account = build_type(
            {
                "name": "account",
                "fields": [
                    {"name": "settings", "type": "json"},
                    {
                        "name": "theme",
                        "type": "string",
                        "source": {"service": "json_field", "options": {"column": "settings", "key": "theme"}},
                    },
                ],
            }
        )
        account = Account(theme="dark")
        assert account.settings == {"theme": "dark"}
        assert account.theme == "dark"

    def test_custom_fields(self, build_type: BuildType) -> None:
        registry = CustomFieldRegistry(
            [
                CustomFieldDefinition.model_validate(
                    {"model": "deal", "name": "region", "type": "enum", "enum_values": ["north", "south"], "required": True}
                ),
                CustomFieldDefinition.model_validate(
                    {"model": "deal", "name": "score", "type": "integer", "max_value": 10, "default_value": 5}
                ),
            ]
        )
        Deal = build_type(dict(DEAL, options={"custom_fields": True}), custom_fields=registry)
        deal = Deal(title="a")
        assert deal.score == 5
        assert deal.custom_data == {"score": 5}
        assert not deal.valid()
        assert deal.errors.on("region") == ["can't be blank"]
        deal.region = "west"
        deal.score = 11
        deal.valid()
        assert deal.errors.on("region") == ["is not included in the list"]
        assert deal.errors.on("score") == ["must be less than or equal to 10"]
        deal.region = "north"
        deal.score = 3
        assert deal.valid()

    def test_label_method(self, build_type: BuildType) -> None:
        Company = build_type(COMPANY)
        assert Company(name="Acme").to_label() == "Acme"
        Deal = build_type(DEAL)
        assert Deal.load(id=4).to_label() == "Deal #4"
        assert str(Deal.load(id=4)) == "Deal #4"

    def test_unknown_label_method(self, build_type: BuildType) -> None:
        with pytest.raises(ConfigurationError, match="label_method 'nope' is not an attribute"):
            build_type({"name": "deal", "options": {"label_method": "nope"}})


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestModelFactory:
    def test_errors_name_model_and_stage(self, build_type: BuildType) -> None:
        data = {"name": "deal", "fields": [{"name": "title", "type": "string", "transforms": ["nope"]}]}
        with pytest.raises(ConfigurationError, match="Failed to build model 'deal' \\(transforms\\)") as exc_info:
            build_type(data)
        assert "transforms service 'nope' not found" in str(exc_info.value)

    def test_schema_is_frozen(self, build_type: BuildType) -> None:
        Deal = build_type(DEAL)
        assert Deal.__schema__.frozen
        with pytest.raises(ConfigurationError, match="frozen"):
            Deal.__schema__.table_name = "other"

    def test_type_naming(self, build_type: BuildType) -> None:
        Deal = build_type(DEAL)
        assert Deal.__name__ == "Deal"
        assert Deal.__schema__.table_name == "deals"

    def test_build_all(self, metadata: MetadataSet, services: ServiceRegistry) -> None:
        factory = ModelFactory(services, types=metadata.types, models=metadata.models)
        registry = factory.build_all(metadata.models.values())
        assert sorted(registry) == ["comment", "company", "contact", "deal", "project", "task"]
        deal = registry["deal"](title="Renewal", company_id=1)
        assert deal.stage == "lead"
        assert deal.valid()
        contact = registry["contact"](email="  ANN@Example.COM ", company_id=1)
        assert contact.email == "ann@example.com"
        task = registry["task"](title="t", project_id=2)
        assert task.position_scope() == (2,)
        with pytest.raises(KeyError, match="No runtime type for model 'ghost'"):
            registry["ghost"]
