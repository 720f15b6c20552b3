from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app import audit
from app.audit import AuditAction
from app.crm.errors import (
    AccountNotFound,
    AuditEntryNotFound,
    CRMError,
    HumanNotFound,
    LossReasonRequired,
    NextActionRequired,
    NoNextAction,
    OpportunityLinkNotFound,
    OpportunityNotFound,
    PrimaryRequired,
)
from app.crm.models import (
    PASSENGER_ROLE,
    PRIMARY_ROLE,
    TERMINAL_STAGES,
    Account,
    AccountType,
    Activity,
    Human,
    HumanType,
    Opportunity,
    OpportunityHuman,
    OpportunityHumanRole,
)
from app.crm.schemas import (
    AccountCreate,
    AccountMutationResult,
    AccountRead,
    AccountUpdate,
    ActivityRead,
    AuditRead,
    HumanCreate,
    HumanMutationResult,
    HumanRead,
    HumanUpdate,
    NextActionInput,
    OpportunityCreate,
    OpportunityDetail,
    OpportunityHumanLinkCreate,
    OpportunityHumanLinkRead,
    OpportunityHumanLinkUpdate,
    OpportunityMutationResult,
    OpportunityRead,
    OpportunityStageUpdate,
    OpportunityUpdate,
)
from app.crm.sequences import next_display_id
from app.metrics import observe_stage_transition
from app.models.audit import AuditLog
from app.otel import get_tracer, mark_span_error

logger = logging.getLogger("app.crm.opportunities")
tracer = get_tracer("app.crm.opportunities")

NEXT_ACTION_FIELDS = (
    "next_action_owner_id",
    "next_action_description",
    "next_action_type",
    "next_action_start_date",
    "next_action_due_date",
    "next_action_completed_at",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ActorUser:
    user_id: str | None
    correlation_id: str | None = None


def seed_opportunity_roles(session: Session) -> dict[str, uuid.UUID]:
    """Ensure the ``primary`` and ``passenger`` role rows exist and return their ids by name."""
    roles = {role.name: role.id for role in session.scalars(select(OpportunityHumanRole)).all()}
    for name in (PRIMARY_ROLE, PASSENGER_ROLE):
        if name not in roles:
            role = OpportunityHumanRole(name=name)
            session.add(role)
            session.flush()
            roles[name] = role.id
    return roles


def _role_names(roles: dict[str, uuid.UUID]) -> dict[uuid.UUID, str]:
    return {role_id: name for name, role_id in roles.items()}


class HumanService:
    entity_type = "human"
    scalar_fields = ("first_name", "middle_name", "last_name", "status")
    required_fields = {"first_name", "last_name", "status"}

    def create_human(self, session: Session, actor_user: ActorUser, dto: HumanCreate) -> HumanRead:
        now = utcnow()
        human = Human(
            display_id=next_display_id(session, "HUM"),
            first_name=dto.first_name.strip(),
            middle_name=dto.middle_name,
            last_name=dto.last_name.strip(),
            status=dto.status,
            created_at=now,
            updated_at=now,
        )
        session.add(human)
        session.flush()
        for human_type in dto.types:
            session.add(HumanType(human_id=human.id, type=human_type, created_at=now))

        audit.record(
            session,
            actor_id=actor_user.user_id,
            action=AuditAction.CREATE,
            entity_type=self.entity_type,
            entity_id=human.id,
            changes=None,
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return self._to_read(session, human)

    def get_human(self, session: Session, human_id: uuid.UUID) -> HumanRead:
        return self._to_read(session, self._get(session, human_id))

    def update_human(
        self,
        session: Session,
        actor_user: ActorUser,
        human_id: uuid.UUID,
        dto: HumanUpdate,
    ) -> HumanMutationResult:
        human = self._get(session, human_id)
        payload = dto.model_dump(exclude_unset=True)
        for key in self.required_fields:
            if key in payload and payload[key] is None:
                payload.pop(key)
        for key in ("first_name", "last_name"):
            if isinstance(payload.get(key), str):
                payload[key] = payload[key].strip()

        old_values: dict[str, Any] = {key: getattr(human, key) for key in self.scalar_fields}
        new_values: dict[str, Any] = {key: payload[key] for key in self.scalar_fields if key in payload}
        if "types" in payload:
            old_values["types"] = self._types(session, human.id)
            new_values["types"] = sorted(payload["types"] or [])

        for key in self.scalar_fields:
            if key in payload:
                setattr(human, key, payload[key])
        if "types" in payload:
            self._replace_types(session, human.id, payload["types"] or [])
        human.updated_at = utcnow()
        session.add(human)
        session.flush()

        audit_entry_id = None
        diff = audit.compute_diff(old_values, new_values)
        if diff:
            audit_entry_id = audit.record(
                session,
                actor_id=actor_user.user_id,
                action=AuditAction.UPDATE,
                entity_type=self.entity_type,
                entity_id=human.id,
                changes=diff,
                correlation_id=actor_user.correlation_id,
            )
        session.commit()
        return HumanMutationResult(data=self._to_read(session, human), audit_entry_id=audit_entry_id)

    def update_human_status(
        self,
        session: Session,
        actor_user: ActorUser,
        human_id: uuid.UUID,
        status: str,
    ) -> HumanMutationResult:
        human = self._get(session, human_id)
        diff = audit.compute_diff({"status": human.status}, {"status": status})
        human.status = status
        human.updated_at = utcnow()
        session.add(human)
        session.flush()

        audit_entry_id = None
        if diff:
            audit_entry_id = audit.record(
                session,
                actor_id=actor_user.user_id,
                action=AuditAction.STATUS_CHANGE,
                entity_type=self.entity_type,
                entity_id=human.id,
                changes=diff,
                correlation_id=actor_user.correlation_id,
            )
        session.commit()
        return HumanMutationResult(data=self._to_read(session, human), audit_entry_id=audit_entry_id)

    def _get(self, session: Session, human_id: uuid.UUID) -> Human:
        human = session.get(Human, human_id)
        if human is None:
            raise HumanNotFound("Human not found")
        return human

    def _types(self, session: Session, human_id: uuid.UUID) -> list[str]:
        return sorted(session.scalars(select(HumanType.type).where(HumanType.human_id == human_id)).all())

    def _replace_types(self, session: Session, human_id: uuid.UUID, types: list[str]) -> None:
        session.execute(delete(HumanType).where(HumanType.human_id == human_id))
        for human_type in types:
            session.add(HumanType(human_id=human_id, type=human_type, created_at=utcnow()))

    def _to_read(self, session: Session, human: Human) -> HumanRead:
        return HumanRead(
            id=human.id,
            display_id=human.display_id,
            first_name=human.first_name,
            middle_name=human.middle_name,
            last_name=human.last_name,
            status=human.status,
            types=self._types(session, human.id),
            created_at=human.created_at,
            updated_at=human.updated_at,
        )


class AccountService:
    entity_type = "account"
    scalar_fields = ("name", "status")

    def create_account(self, session: Session, actor_user: ActorUser, dto: AccountCreate) -> AccountRead:
        now = utcnow()
        account = Account(
            display_id=next_display_id(session, "ACC"),
            name=dto.name.strip(),
            status=dto.status,
            created_at=now,
            updated_at=now,
        )
        session.add(account)
        session.flush()
        for type_id in dto.type_ids:
            session.add(AccountType(account_id=account.id, type_id=type_id, created_at=now))

        audit.record(
            session,
            actor_id=actor_user.user_id,
            action=AuditAction.CREATE,
            entity_type=self.entity_type,
            entity_id=account.id,
            changes=None,
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return self._to_read(session, account)

    def get_account(self, session: Session, account_id: uuid.UUID) -> AccountRead:
        return self._to_read(session, self._get(session, account_id))

    def update_account(
        self,
        session: Session,
        actor_user: ActorUser,
        account_id: uuid.UUID,
        dto: AccountUpdate,
    ) -> AccountMutationResult:
        account = self._get(session, account_id)
        payload = {key: value for key, value in dto.model_dump(exclude_unset=True).items() if value is not None}
        if "name" in payload:
            payload["name"] = payload["name"].strip()

        old_values: dict[str, Any] = {key: getattr(account, key) for key in self.scalar_fields}
        new_values: dict[str, Any] = {key: payload[key] for key in self.scalar_fields if key in payload}
        if "type_ids" in payload:
            old_values["type_ids"] = self._type_ids(session, account.id)
            new_values["type_ids"] = sorted(payload["type_ids"])

        for key in self.scalar_fields:
            if key in payload:
                setattr(account, key, payload[key])
        if "type_ids" in payload:
            session.execute(delete(AccountType).where(AccountType.account_id == account.id))
            for type_id in payload["type_ids"]:
                session.add(AccountType(account_id=account.id, type_id=type_id, created_at=utcnow()))
        account.updated_at = utcnow()
        session.add(account)
        session.flush()

        audit_entry_id = None
        diff = audit.compute_diff(old_values, new_values)
        if diff:
            audit_entry_id = audit.record(
                session,
                actor_id=actor_user.user_id,
                action=AuditAction.UPDATE,
                entity_type=self.entity_type,
                entity_id=account.id,
                changes=diff,
                correlation_id=actor_user.correlation_id,
            )
        session.commit()
        return AccountMutationResult(data=self._to_read(session, account), audit_entry_id=audit_entry_id)

    def update_account_status(
        self,
        session: Session,
        actor_user: ActorUser,
        account_id: uuid.UUID,
        status: str,
    ) -> AccountMutationResult:
        account = self._get(session, account_id)
        diff = audit.compute_diff({"status": account.status}, {"status": status})
        account.status = status
        account.updated_at = utcnow()
        session.add(account)
        session.flush()

        audit_entry_id = None
        if diff:
            audit_entry_id = audit.record(
                session,
                actor_id=actor_user.user_id,
                action=AuditAction.STATUS_CHANGE,
                entity_type=self.entity_type,
                entity_id=account.id,
                changes=diff,
                correlation_id=actor_user.correlation_id,
            )
        session.commit()
        return AccountMutationResult(data=self._to_read(session, account), audit_entry_id=audit_entry_id)

    def _get(self, session: Session, account_id: uuid.UUID) -> Account:
        account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFound("Account not found")
        return account

    def _type_ids(self, session: Session, account_id: uuid.UUID) -> list[str]:
        return sorted(session.scalars(select(AccountType.type_id).where(AccountType.account_id == account_id)).all())

    def _to_read(self, session: Session, account: Account) -> AccountRead:
        return AccountRead(
            id=account.id,
            display_id=account.display_id,
            name=account.name,
            status=account.status,
            type_ids=self._type_ids(session, account.id),
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class OpportunityService:
    entity_type = "opportunity"
    update_fields = ("seats_requested", "passenger_seats", "pet_seats", "notes", "loss_reason", "flight_id")
    required_fields = {"seats_requested", "passenger_seats", "pet_seats"}

    def create_opportunity(self, session: Session, actor_user: ActorUser, dto: OpportunityCreate) -> OpportunityRead:
        loss_reason = dto.loss_reason.strip() if dto.loss_reason is not None else None
        if dto.stage == "closed_lost" and not loss_reason:
            raise LossReasonRequired("Loss reason is required for closed_lost")

        now = utcnow()
        opportunity = Opportunity(
            display_id=next_display_id(session, "OPP"),
            stage=dto.stage,
            seats_requested=dto.seats_requested,
            passenger_seats=dto.passenger_seats,
            pet_seats=dto.pet_seats,
            notes=dto.notes,
            loss_reason=loss_reason or None,
            created_at=now,
            updated_at=now,
        )
        session.add(opportunity)
        session.flush()

        audit.record(
            session,
            actor_id=actor_user.user_id,
            action=AuditAction.CREATE,
            entity_type=self.entity_type,
            entity_id=opportunity.id,
            changes={"display_id": {"old": None, "new": opportunity.display_id}},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return self._to_read(opportunity)

    def list_opportunities(
        self,
        session: Session,
        *,
        stage: str | None = None,
        owner_id: str | None = None,
        human_id: uuid.UUID | None = None,
        overdue_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OpportunityRead]:
        stmt = select(Opportunity)
        if stage:
            stmt = stmt.where(Opportunity.stage == stage)
        if owner_id:
            stmt = stmt.where(Opportunity.next_action_owner_id == owner_id)
        if human_id is not None:
            stmt = stmt.where(
                Opportunity.id.in_(select(OpportunityHuman.opportunity_id).where(OpportunityHuman.human_id == human_id))
            )
        if overdue_only:
            stmt = stmt.where(
                Opportunity.next_action_due_date < date.today().isoformat(),
                Opportunity.next_action_completed_at.is_(None),
            )

        stmt = stmt.order_by(
            Opportunity.next_action_due_date.is_(None),
            Opportunity.next_action_due_date.asc(),
            Opportunity.created_at.desc(),
        )
        return [self._to_read(opportunity) for opportunity in session.scalars(stmt.offset(offset).limit(limit)).all()]

    def get_opportunity(self, session: Session, opportunity_id: uuid.UUID) -> OpportunityDetail:
        opportunity = self._get(session, opportunity_id)
        role_names = _role_names(seed_opportunity_roles(session))

        links = session.scalars(
            select(OpportunityHuman)
            .where(OpportunityHuman.opportunity_id == opportunity.id)
            .order_by(OpportunityHuman.created_at.asc())
        ).all()
        activities = session.scalars(
            select(Activity).where(Activity.opportunity_id == opportunity.id).order_by(Activity.activity_date.desc())
        ).all()

        return OpportunityDetail(
            **self._to_read(opportunity).model_dump(),
            linked_humans=[self._to_link_read(session, link, role_names) for link in links],
            activities=[ActivityRead.model_validate(activity) for activity in activities],
        )

    def update_opportunity(
        self,
        session: Session,
        actor_user: ActorUser,
        opportunity_id: uuid.UUID,
        dto: OpportunityUpdate,
    ) -> OpportunityMutationResult:
        opportunity = self._get(session, opportunity_id)
        payload = dto.model_dump(exclude_unset=True)
        for key in self.required_fields:
            if key in payload and payload[key] is None:
                payload.pop(key)
        if "loss_reason" in payload:
            loss_reason = (payload["loss_reason"] or "").strip()
            if opportunity.stage == "closed_lost" and not loss_reason:
                raise LossReasonRequired("Loss reason is required for closed_lost")
            payload["loss_reason"] = loss_reason or None

        old_values = {key: getattr(opportunity, key) for key in self.update_fields if key in payload}
        new_values = {key: payload[key] for key in self.update_fields if key in payload}
        for key, value in new_values.items():
            setattr(opportunity, key, value)
        opportunity.updated_at = utcnow()
        session.add(opportunity)
        session.flush()

        audit_entry_id = self._record_if_changed(session, actor_user, opportunity, AuditAction.UPDATE, old_values, new_values)
        session.commit()
        return OpportunityMutationResult(data=self._to_read(opportunity), audit_entry_id=audit_entry_id)

    def update_next_action(
        self,
        session: Session,
        actor_user: ActorUser,
        opportunity_id: uuid.UUID,
        dto: NextActionInput,
    ) -> OpportunityMutationResult:
        opportunity = self._get(session, opportunity_id)
        old_values = self._next_action_snapshot(opportunity)
        self._apply_next_action(opportunity, dto, actor_user)
        opportunity.updated_at = utcnow()
        session.add(opportunity)
        session.flush()

        audit_entry_id = self._record_if_changed(
            session,
            actor_user,
            opportunity,
            AuditAction.UPDATE,
            old_values,
            self._next_action_snapshot(opportunity),
        )
        session.commit()
        return OpportunityMutationResult(data=self._to_read(opportunity), audit_entry_id=audit_entry_id)

    def update_stage(
        self,
        session: Session,
        actor_user: ActorUser,
        opportunity_id: uuid.UUID,
        dto: OpportunityStageUpdate,
    ) -> OpportunityMutationResult:
        opportunity = self._get(session, opportunity_id)
        from_stage = opportunity.stage
        to_stage = dto.stage
        old_values = self._stage_snapshot(opportunity)

        with tracer.start_as_current_span("opportunity.stage_change") as span:
            span.set_attribute("opportunity_id", str(opportunity.id))
            span.set_attribute("from_stage", from_stage)
            span.set_attribute("to_stage", to_stage)
            try:
                now = utcnow()
                if to_stage == "closed_lost":
                    loss_reason = (dto.loss_reason or "").strip()
                    if not loss_reason:
                        raise LossReasonRequired("Loss reason is required for closed_lost")
                    self._clear_next_action(opportunity)
                    opportunity.loss_reason = loss_reason
                elif to_stage == "closed_flown":
                    if opportunity.next_action_description and opportunity.next_action_completed_at is None:
                        self._create_activity_from_next_action(
                            session,
                            actor_user,
                            opportunity,
                            subject=f"[Auto] {opportunity.next_action_description}",
                            now=now,
                        )
                    self._clear_next_action(opportunity)
                else:
                    if not opportunity.next_action_description and dto.next_action is None:
                        raise NextActionRequired("A next action is required before moving to a non-terminal stage")
                    if dto.next_action is not None:
                        self._apply_next_action(opportunity, dto.next_action, actor_user)

                opportunity.stage = to_stage
                opportunity.updated_at = now
                session.add(opportunity)
                session.flush()

                # Next-action and loss-reason writes ride along in the same entry.
                audit_entry_id = self._record_if_changed(
                    session,
                    actor_user,
                    opportunity,
                    AuditAction.STAGE_CHANGE if from_stage != to_stage else AuditAction.UPDATE,
                    old_values,
                    self._stage_snapshot(opportunity),
                )
                session.commit()
            except CRMError as exc:
                session.rollback()
                mark_span_error(span, exc)
                raise

        if from_stage != to_stage:
            observe_stage_transition(from_stage, to_stage)
            logger.info(
                "opportunity.stage_changed",
                extra={
                    "entity_type": self.entity_type,
                    "entity_id": str(opportunity.id),
                    "from_stage": from_stage,
                    "to_stage": to_stage,
                    "audit_entry_id": audit_entry_id,
                    "actor_id": actor_user.user_id,
                },
            )
        return OpportunityMutationResult(data=self._to_read(opportunity), audit_entry_id=audit_entry_id)

    def complete_next_action(
        self,
        session: Session,
        actor_user: ActorUser,
        opportunity_id: uuid.UUID,
    ) -> OpportunityMutationResult:
        opportunity = self._get(session, opportunity_id)
        description = opportunity.next_action_description
        if not description:
            raise NoNextAction("No next action to complete")

        now = utcnow()
        self._create_activity_from_next_action(session, actor_user, opportunity, subject=description, now=now)
        self._clear_next_action(opportunity)
        opportunity.updated_at = now
        session.add(opportunity)
        session.flush()

        audit_entry_id = audit.record(
            session,
            actor_id=actor_user.user_id,
            action=AuditAction.NEXT_ACTION_DONE,
            entity_type=self.entity_type,
            entity_id=opportunity.id,
            changes={"next_action_description": {"old": description, "new": None}},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        logger.info(
            "opportunity.next_action_completed",
            extra={"entity_type": self.entity_type, "entity_id": str(opportunity.id), "audit_entry_id": audit_entry_id},
        )
        return OpportunityMutationResult(data=self._to_read(opportunity), audit_entry_id=audit_entry_id)

    def link_human(
        self,
        session: Session,
        actor_user: ActorUser,
        opportunity_id: uuid.UUID,
        dto: OpportunityHumanLinkCreate,
    ) -> OpportunityHumanLinkRead:
        opportunity = self._get(session, opportunity_id)
        if session.get(Human, dto.human_id) is None:
            raise HumanNotFound("Human not found")

        roles = seed_opportunity_roles(session)
        existing_links = session.scalars(
            select(OpportunityHuman).where(OpportunityHuman.opportunity_id == opportunity.id)
        ).all()

        if not existing_links:
            role_id = roles[PRIMARY_ROLE]
        else:
            role_id = roles[dto.role or PASSENGER_ROLE]

        if role_id == roles[PRIMARY_ROLE]:
            for link in existing_links:
                if link.role_id == roles[PRIMARY_ROLE]:
                    link.role_id = roles[PASSENGER_ROLE]
                    session.add(link)

        link = OpportunityHuman(opportunity_id=opportunity.id, human_id=dto.human_id, role_id=role_id, created_at=utcnow())
        session.add(link)
        session.commit()
        return self._to_link_read(session, link, _role_names(roles))

    def update_human_role(
        self,
        session: Session,
        actor_user: ActorUser,
        link_id: uuid.UUID,
        dto: OpportunityHumanLinkUpdate,
    ) -> OpportunityHumanLinkRead:
        link = self._get_link(session, link_id)
        roles = seed_opportunity_roles(session)
        role_id = roles[dto.role]

        if link.role_id == roles[PRIMARY_ROLE] and role_id != roles[PRIMARY_ROLE]:
            opportunity = session.get(Opportunity, link.opportunity_id)
            if opportunity is not None and opportunity.stage not in TERMINAL_STAGES:
                raise PrimaryRequired("Cannot demote the primary human on a non-terminal opportunity")

        if role_id == roles[PRIMARY_ROLE]:
            session.execute(
                update(OpportunityHuman)
                .where(
                    OpportunityHuman.opportunity_id == link.opportunity_id,
                    OpportunityHuman.role_id == roles[PRIMARY_ROLE],
                    OpportunityHuman.id != link.id,
                )
                .values(role_id=roles[PASSENGER_ROLE])
                .execution_options(synchronize_session="fetch")
            )

        link.role_id = role_id
        session.add(link)
        session.commit()
        return self._to_link_read(session, link, _role_names(roles))

    def unlink_human(self, session: Session, actor_user: ActorUser, link_id: uuid.UUID) -> None:
        link = self._get_link(session, link_id)
        roles = seed_opportunity_roles(session)

        if link.role_id == roles[PRIMARY_ROLE]:
            opportunity = session.get(Opportunity, link.opportunity_id)
            if opportunity is not None and opportunity.stage not in TERMINAL_STAGES:
                others = session.scalars(
                    select(OpportunityHuman.id).where(
                        OpportunityHuman.opportunity_id == link.opportunity_id,
                        OpportunityHuman.id != link.id,
                    )
                ).first()
                if others is not None:
                    raise PrimaryRequired(
                        "Cannot remove primary human while other humans are linked on a non-terminal opportunity"
                    )

        session.delete(link)
        session.commit()

    def delete_opportunity(self, session: Session, actor_user: ActorUser, opportunity_id: uuid.UUID) -> None:
        opportunity = self._get(session, opportunity_id)
        session.execute(delete(OpportunityHuman).where(OpportunityHuman.opportunity_id == opportunity.id))
        session.execute(
            update(Activity)
            .where(Activity.opportunity_id == opportunity.id)
            .values(opportunity_id=None)
            .execution_options(synchronize_session="fetch")
        )
        session.delete(opportunity)
        session.commit()

    def _get(self, session: Session, opportunity_id: uuid.UUID) -> Opportunity:
        opportunity = session.get(Opportunity, opportunity_id)
        if opportunity is None:
            raise OpportunityNotFound("Opportunity not found")
        return opportunity

    def _get_link(self, session: Session, link_id: uuid.UUID) -> OpportunityHuman:
        link = session.get(OpportunityHuman, link_id)
        if link is None:
            raise OpportunityLinkNotFound("Link not found")
        return link

    def _apply_next_action(self, opportunity: Opportunity, dto: NextActionInput, actor_user: ActorUser) -> None:
        opportunity.next_action_owner_id = dto.owner_id or actor_user.user_id
        opportunity.next_action_description = dto.description.strip()
        opportunity.next_action_type = dto.type
        opportunity.next_action_start_date = dto.start_date.isoformat() if dto.start_date else None
        opportunity.next_action_due_date = dto.due_date.isoformat()
        opportunity.next_action_completed_at = None

    def _clear_next_action(self, opportunity: Opportunity) -> None:
        for field_name in NEXT_ACTION_FIELDS:
            setattr(opportunity, field_name, None)

    def _next_action_snapshot(self, opportunity: Opportunity) -> dict[str, Any]:
        return {
            "next_action_owner_id": opportunity.next_action_owner_id,
            "next_action_description": opportunity.next_action_description,
            "next_action_type": opportunity.next_action_type,
            "next_action_start_date": opportunity.next_action_start_date,
            "next_action_due_date": opportunity.next_action_due_date,
        }

    def _create_activity_from_next_action(
        self,
        session: Session,
        actor_user: ActorUser,
        opportunity: Opportunity,
        *,
        subject: str,
        now: datetime,
    ) -> Activity:
        activity = Activity(
            display_id=next_display_id(session, "ACT"),
            type=opportunity.next_action_type or "email",
            subject=subject,
            activity_date=now,
            opportunity_id=opportunity.id,
            created_by_colleague_id=actor_user.user_id,
            created_at=now,
            updated_at=now,
        )
        session.add(activity)
        session.flush()
        return activity

    def _record_if_changed(
        self,
        session: Session,
        actor_user: ActorUser,
        opportunity: Opportunity,
        action: str,
        old_values: dict[str, Any],
        new_values: dict[str, Any],
    ) -> str | None:
        diff = audit.compute_diff(old_values, new_values)
        if not diff:
            return None
        return audit.record(
            session,
            actor_id=actor_user.user_id,
            action=action,
            entity_type=self.entity_type,
            entity_id=opportunity.id,
            changes=diff,
            correlation_id=actor_user.correlation_id,
        )

    def _to_read(self, opportunity: Opportunity) -> OpportunityRead:
        is_overdue = (
            opportunity.next_action_due_date is not None
            and opportunity.next_action_completed_at is None
            and opportunity.next_action_due_date < date.today().isoformat()
        )
        return OpportunityRead.model_validate(opportunity).model_copy(update={"is_overdue": is_overdue})

    def _to_link_read(
        self,
        session: Session,
        link: OpportunityHuman,
        role_names: dict[uuid.UUID, str],
    ) -> OpportunityHumanLinkRead:
        human = session.get(Human, link.human_id)
        return OpportunityHumanLinkRead(
            id=link.id,
            opportunity_id=link.opportunity_id,
            human_id=link.human_id,
            role_id=link.role_id,
            role_name=role_names.get(link.role_id) if link.role_id is not None else None,
            human_display_id=human.display_id if human is not None else None,
            human_name=f"{human.first_name} {human.last_name}" if human is not None else None,
            created_at=link.created_at,
        )


class AuditService:
    def list_entity_entries(
        self,
        session: Session,
        entity_type: str | None = None,
        entity_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditRead]:
        stmt = select(AuditLog)
        if entity_type:
            stmt = stmt.where(AuditLog.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(AuditLog.entity_id == entity_id)
        rows = session.scalars(stmt.order_by(AuditLog.created_at.desc()).limit(limit)).all()
        return [AuditRead.model_validate(row) for row in rows]

    def get_entry(self, session: Session, entry_id: str) -> AuditRead:
        entry = session.get(AuditLog, entry_id)
        if entry is None:
            raise AuditEntryNotFound(f"Audit entry {entry_id} not found")
        return AuditRead.model_validate(entry)
