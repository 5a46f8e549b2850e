"""
AlertRuleService -- administration of configurable alert rules.

Contract:
    create / update / get / list / deactivate rules, and seed the default
    rules from configuration.  Every write is validated with
    ``validate_rule``; problems raise InvalidRuleError listing all of them.

Invariants enforced:
    - Rule names are unique (seeding is idempotent by name).
    - Rules are deactivated, never deleted, so alerts keep their rule_id.
    - ``last_triggered_at`` is not editable here.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_kernel.db.engine import session_scope
from inventory_kernel.exceptions import (
    InvalidRuleError,
    PersistenceFailureError,
    RuleNotFoundError,
)
from inventory_kernel.logging_config import get_logger

from inventory_alerts.domain.codec import rule_from_dict, rule_to_dict, validate_rule
from inventory_alerts.domain.types import AlertRuleDef, RuleCategory
from inventory_alerts.models.rule import AlertRuleModel

logger = get_logger("alerts.rule_service")

READ_ONLY_FIELDS = frozenset({"rule_id", "last_triggered_at", "created_by"})


def _parse(data: Mapping[str, Any]) -> AlertRuleDef:
    try:
        return rule_from_dict(data)
    except KeyError as exc:
        raise InvalidRuleError(str(data.get("name", "")), [f"missing field {exc}"]) from exc
    except (ValueError, TypeError) as exc:
        raise InvalidRuleError(str(data.get("name", "")), [str(exc)]) from exc


def _validated(rule: AlertRuleDef) -> AlertRuleDef:
    errors = validate_rule(rule)
    if errors:
        raise InvalidRuleError(rule.name, errors)
    return rule


class AlertRuleService:
    """CRUD over AlertRuleModel with validation."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def create_rule(
        self,
        rule: AlertRuleDef | Mapping[str, Any],
        actor: str = "system",
    ) -> AlertRuleDef:
        """
        Validate and persist a new rule.

        Raises:
            InvalidRuleError: the rule is malformed or its name is taken.
        """
        definition = _validated(rule if isinstance(rule, AlertRuleDef) else _parse(rule))
        try:
            with session_scope(self._session_factory) as session:
                if self._by_name(session, definition.name) is not None:
                    raise InvalidRuleError(
                        definition.name, [f"rule name '{definition.name}' already exists"],
                    )
                model = AlertRuleModel.from_dto(definition)
                model.created_by = actor
                session.add(model)
                session.flush()
                created = model.to_dto()
        except IntegrityError as exc:
            raise InvalidRuleError(
                definition.name, [f"rule name '{definition.name}' already exists"],
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("create_rule", str(exc)) from exc

        logger.info(
            "alert_rule_created",
            extra={"rule_id": str(created.rule_id), "rule_name": created.name},
        )
        return created

    def update_rule(self, rule_id: UUID, changes: Mapping[str, Any]) -> AlertRuleDef:
        """Apply a partial update given in the rule dict shape."""
        ignored = READ_ONLY_FIELDS & set(changes)
        try:
            with session_scope(self._session_factory) as session:
                model = self._load(session, rule_id)
                merged = rule_to_dict(model.to_dto())
                merged.update({k: v for k, v in changes.items() if k not in READ_ONLY_FIELDS})
                definition = _validated(_parse(merged))

                if definition.name != model.name:
                    clash = self._by_name(session, definition.name)
                    if clash is not None:
                        raise InvalidRuleError(
                            definition.name,
                            [f"rule name '{definition.name}' already exists"],
                        )
                model.apply(definition)
                session.flush()
                updated = model.to_dto()
        except SQLAlchemyError as exc:
            raise PersistenceFailureError("update_rule", str(exc)) from exc

        logger.info(
            "alert_rule_updated",
            extra={
                "rule_id": str(rule_id),
                "fields": sorted(set(changes) - READ_ONLY_FIELDS),
                "ignored_fields": sorted(ignored),
            },
        )
        return updated

    def get_rule(self, rule_id: UUID) -> AlertRuleDef:
        with session_scope(self._session_factory) as session:
            return self._load(session, rule_id).to_dto()

    def list_rules(
        self,
        category: RuleCategory | str | None = None,
        is_active: bool | None = None,
    ) -> list[AlertRuleDef]:
        query = select(AlertRuleModel)
        if category is not None:
            query = query.where(AlertRuleModel.category == RuleCategory(category).value)
        if is_active is not None:
            query = query.where(AlertRuleModel.is_active == is_active)
        query = query.order_by(AlertRuleModel.name)
        with session_scope(self._session_factory) as session:
            return [m.to_dto() for m in session.execute(query).scalars()]

    def deactivate_rule(self, rule_id: UUID, actor: str = "system") -> AlertRuleDef:
        with session_scope(self._session_factory) as session:
            model = self._load(session, rule_id)
            model.is_active = False
            session.flush()
            rule = model.to_dto()
        logger.info(
            "alert_rule_deactivated",
            extra={"rule_id": str(rule_id), "actor": actor},
        )
        return rule

    def seed_default_rules(
        self,
        rules: Iterable[Mapping[str, Any]],
        actor: str = "system",
    ) -> list[AlertRuleDef]:
        """Create each configured rule whose name does not exist yet."""
        created: list[AlertRuleDef] = []
        for data in rules:
            with session_scope(self._session_factory) as session:
                exists = self._by_name(session, str(data.get("name", ""))) is not None
            if exists:
                continue
            created.append(self.create_rule(data, actor))
        logger.info("default_rules_seeded", extra={"rules_created": len(created)})
        return created

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _load(self, session: Session, rule_id: UUID) -> AlertRuleModel:
        model = session.get(AlertRuleModel, rule_id)
        if model is None:
            raise RuleNotFoundError(str(rule_id))
        return model

    def _by_name(self, session: Session, name: str) -> AlertRuleModel | None:
        return session.execute(
            select(AlertRuleModel).where(AlertRuleModel.name == name)
        ).scalar_one_or_none()
