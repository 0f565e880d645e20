from sqlalchemy.orm import Session
from typing import List, Optional
from decimal import Decimal
from datetime import timezone

from loyalty.models.commission_rule import CommissionRule, CommissionType
from loyalty.schemas.commission_rule import CommissionRuleCreate, CommissionRuleUpdate
from loyalty.core.exceptions import NotFoundError, ValidationError

LIST_FIELDS = ("role_applicable", "allowed_levels", "product_ids", "stylist_ids")


class CommissionRuleService:
    @staticmethod
    def find_active_rules_ordered_by_priority(db: Session) -> List[CommissionRule]:
        """Active rules, highest priority first; equal priorities keep insertion order"""
        rules = db.query(CommissionRule).filter(
            CommissionRule.is_active == True
        ).order_by(CommissionRule.created_at.asc()).all()

        return sorted(rules, key=lambda rule: -(rule.priority or 0))

    @staticmethod
    def list_rules(db: Session, include_inactive: bool = True) -> List[CommissionRule]:
        query = db.query(CommissionRule)
        if not include_inactive:
            query = query.filter(CommissionRule.is_active == True)
        return query.order_by(CommissionRule.priority.desc(), CommissionRule.created_at.asc()).all()

    @staticmethod
    def get_rule(db: Session, rule_id: str) -> CommissionRule:
        rule = db.query(CommissionRule).filter(CommissionRule.id == rule_id).first()
        if not rule:
            raise NotFoundError("Commission rule not found", details={"rule_id": rule_id})
        return rule

    @staticmethod
    def create_rule(db: Session, payload: CommissionRuleCreate) -> CommissionRule:
        data = CommissionRuleService._to_columns(payload.model_dump())
        CommissionRuleService._validate(data.get("type"), data.get("value"), data.get("tiers"))

        rule = CommissionRule(**data)
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule

    @staticmethod
    def update_rule(db: Session, rule_id: str, payload: CommissionRuleUpdate) -> CommissionRule:
        rule = CommissionRuleService.get_rule(db, rule_id)

        data = CommissionRuleService._to_columns(payload.model_dump(exclude_unset=True))
        CommissionRuleService._validate(
            data.get("type", rule.type),
            data.get("value", rule.value),
            data.get("tiers", rule.tiers),
        )

        for field, value in data.items():
            setattr(rule, field, value)

        db.commit()
        db.refresh(rule)
        return rule

    @staticmethod
    def delete_rule(db: Session, rule_id: str) -> None:
        rule = CommissionRuleService.get_rule(db, rule_id)
        db.delete(rule)
        db.commit()

    @staticmethod
    def _to_columns(data: dict) -> dict:
        """Convert validated schema values into JSON-safe column values"""
        for field in LIST_FIELDS:
            if field in data and data[field] is not None:
                data[field] = [getattr(item, "value", item) for item in data[field]]

        for field in ("valid_from", "valid_until"):
            moment = data.get(field)
            if moment is not None and moment.tzinfo is not None:
                data[field] = moment.astimezone(timezone.utc).replace(tzinfo=None)

        if data.get("tiers") is not None:
            data["tiers"] = [
                {
                    "min_amount": str(tier["min_amount"]),
                    "max_amount": str(tier["max_amount"]) if tier["max_amount"] is not None else None,
                    "rate": str(tier["rate"]),
                }
                for tier in data["tiers"]
            ]
        return data

    @staticmethod
    def _validate(rule_type: Optional[CommissionType], value, tiers) -> None:
        if rule_type == CommissionType.TIERED:
            if not tiers:
                raise ValidationError("Tiered rules need at least one tier")
            for tier in tiers:
                max_amount = tier.get("max_amount")
                if max_amount is not None and Decimal(str(max_amount)) < Decimal(str(tier["min_amount"])):
                    raise ValidationError(
                        "Tier max_amount must not be below min_amount",
                        details={"tier": tier},
                    )
        elif value is None:
            raise ValidationError("Percentage and fixed rules need a value")
