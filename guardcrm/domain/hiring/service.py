"""Hiring service - application Kanban board, stage workflow, comments and presence"""

import logging
import secrets
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ...email_service import EmailDeliveryError, send_application_stage_email
from ...models import Lead, User
from ...models_hiring import ApplicationComment, GuardApplication, StageHistory
from ...services.pii_encryption import (
    SENSITIVE_APPLICATION_FIELDS,
    PIIEncryptionError,
    decrypt_fields,
    encrypt_fields,
    mask_fields,
)
from ...services.realtime import board_channel, hub
from ...utils.sanitization import sanitize_dict, sanitize_html, sanitize_text
from ..audit.trail import record_event
from ..notifications.service import NotificationService
from .schemas import ApplicationCreate, BoardFilters, BulkActionRequest, CommentCreate
from .stages import STAGE_CONFIGURATIONS, STAGE_ORDER, TransitionError, extract_mentions, validate_stage_transition

logger = logging.getLogger(__name__)

BOARD = "hiring"


def serialize_application(application: GuardApplication) -> dict:
    """API view; encrypted PII is masked"""
    return {
        "id": application.id,
        "leadId": application.lead_id,
        "firstName": application.first_name,
        "lastName": application.last_name,
        "email": application.email,
        "phone": application.phone,
        "pipelineStage": application.pipeline_stage,
        "assignedTo": application.assigned_to,
        "priority": application.priority,
        "stageChangedAt": application.stage_changed_at,
        "stageChangedBy": application.stage_changed_by,
        "workflowNotes": application.workflow_notes,
        "applicationData": mask_fields(application.application_data or {}, SENSITIVE_APPLICATION_FIELDS),
        "applicationReference": application.application_reference,
        "createdAt": application.created_at,
    }


def serialize_comment(comment: ApplicationComment, author_names: dict[int, str]) -> dict:
    return {
        "id": comment.id,
        "applicationId": comment.application_id,
        "authorId": comment.author_id,
        "authorName": author_names.get(comment.author_id, "System") if comment.author_id else "System",
        "commentText": comment.comment_text,
        "commentType": comment.comment_type,
        "parentCommentId": comment.parent_comment_id,
        "mentions": comment.mentions or [],
        "isDeleted": comment.is_deleted,
        "createdAt": comment.created_at,
        "updatedAt": comment.updated_at,
        "replies": [],
    }


class HiringService:
    def __init__(self, db: Session):
        self.db = db

    # ========================================================================
    # APPLICATIONS
    # ========================================================================

    def get_application(self, application_id: int, user: User) -> GuardApplication:
        application = (
            self.db.query(GuardApplication)
            .filter(
                GuardApplication.id == application_id,
                GuardApplication.organization_id == user.organization_id,
            )
            .first()
        )
        if not application:
            raise HTTPException(status_code=404, detail="Application not found")
        return application

    def _lead_for(self, application: GuardApplication) -> Optional[Lead]:
        if not application.lead_id:
            return None
        return (
            self.db.query(Lead)
            .filter(Lead.id == application.lead_id, Lead.organization_id == application.organization_id)
            .first()
        )

    def create_application(self, data: ApplicationCreate, user: User) -> GuardApplication:
        """Register an application; sensitive application fields are encrypted at rest"""
        lead = None
        if data.leadId:
            lead = (
                self.db.query(Lead)
                .filter(Lead.id == data.leadId, Lead.organization_id == user.organization_id)
                .first()
            )
            if not lead or lead.lead_type != "guard":
                raise HTTPException(status_code=400, detail="Lead not found or not a guard lead")

        try:
            application_data = encrypt_fields(
                sanitize_dict(data.applicationData), SENSITIVE_APPLICATION_FIELDS
            )
        except PIIEncryptionError as e:
            logger.error(f"❌ PII encryption failed: {e}")
            raise HTTPException(status_code=500, detail="Sensitive data could not be secured") from e

        now = datetime.utcnow()
        application = GuardApplication(
            organization_id=user.organization_id,
            lead_id=lead.id if lead else None,
            first_name=sanitize_text(data.firstName, 100),
            last_name=sanitize_text(data.lastName, 100),
            email=data.email,
            phone=data.phone,
            pipeline_stage="application_received",
            priority=data.priority,
            stage_changed_at=now,
            stage_changed_by=user.id,
            application_data=application_data,
            application_reference=f"APP-{now:%Y%m%d}-{secrets.token_hex(4).upper()}",
        )
        self.db.add(application)
        self.db.flush()
        self.db.add(
            StageHistory(
                application_id=application.id,
                from_stage=None,
                to_stage="application_received",
                changed_by=user.id,
                changed_at=now,
            )
        )
        if lead:
            lead.application_status = "application_received"
        self.db.commit()
        self.db.refresh(application)
        logger.info(f"🆕 Application {application.application_reference} created")
        return application

    def get_sensitive_data(self, application_id: int, user: User, ip_address: Optional[str] = None) -> dict:
        """Decrypted PII for administrators; every access is audited"""
        if user.role != "admin":
            raise HTTPException(status_code=403, detail="Administrator access required")
        application = self.get_application(application_id, user)
        try:
            decrypted = decrypt_fields(application.application_data or {}, SENSITIVE_APPLICATION_FIELDS)
        except PIIEncryptionError as e:
            raise HTTPException(status_code=500, detail="Sensitive data could not be decrypted") from e

        record_event(
            self.db,
            action="pii_access",
            entity_type="guard_application",
            entity_id=application.id,
            organization_id=user.organization_id,
            actor_id=user.id,
            new_state={"fields": SENSITIVE_APPLICATION_FIELDS},
            ip_address=ip_address,
        )
        return {field: decrypted.get(field) for field in SENSITIVE_APPLICATION_FIELDS}

    # ========================================================================
    # BOARD
    # ========================================================================

    def get_board(self, user: User, filters: BoardFilters) -> dict:
        query = self.db.query(GuardApplication).filter(GuardApplication.organization_id == user.organization_id)

        if filters.stages:
            query = query.filter(GuardApplication.pipeline_stage.in_(filters.stages))
        if filters.onlyMine:
            query = query.filter(GuardApplication.assigned_to == user.id)
        elif filters.assignedManagers:
            query = query.filter(GuardApplication.assigned_to.in_(filters.assignedManagers))
        if filters.priorities:
            query = query.filter(GuardApplication.priority.in_(filters.priorities))
        if filters.dateFrom:
            query = query.filter(GuardApplication.created_at >= filters.dateFrom)
        if filters.dateTo:
            query = query.filter(GuardApplication.created_at <= filters.dateTo)
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            query = query.filter(
                or_(
                    func.lower(GuardApplication.first_name).like(pattern),
                    func.lower(GuardApplication.last_name).like(pattern),
                    func.lower(GuardApplication.email).like(pattern),
                    func.lower(GuardApplication.application_reference).like(pattern),
                )
            )

        applications = query.order_by(GuardApplication.priority, GuardApplication.stage_changed_at.desc()).all()

        by_stage: dict[str, list[dict]] = {stage: [] for stage in STAGE_ORDER}
        for application in applications:
            by_stage.setdefault(application.pipeline_stage, []).append(serialize_application(application))

        stages = [s for s in STAGE_ORDER if not filters.stages or s in filters.stages]
        columns = [
            {
                "stage": stage,
                "title": STAGE_CONFIGURATIONS[stage].title,
                "description": STAGE_CONFIGURATIONS[stage].description,
                "count": len(by_stage[stage]),
                "applications": by_stage[stage],
            }
            for stage in stages
        ]
        return {"columns": columns, "totalApplications": len(applications)}

    # ========================================================================
    # STAGE TRANSITIONS
    # ========================================================================

    async def transition(
        self,
        application_id: int,
        new_stage: str,
        user: User,
        notes: Optional[str] = None,
        expected_stage: Optional[str] = None,
    ) -> GuardApplication:
        """
        Move an application to a new stage. expected_stage carries the stage the
        client last saw; a mismatch returns 409 with the current state so an
        optimistic board update can be rolled back.
        """
        application = self.get_application(application_id, user)
        previous_stage = application.pipeline_stage

        if expected_stage and previous_stage != expected_stage:
            raise HTTPException(
                status_code=409,
                detail={
                    "message": "Application stage changed since it was loaded",
                    "currentStage": previous_stage,
                    "application": jsonable_encoder(serialize_application(application)),
                },
            )

        try:
            target = validate_stage_transition(previous_stage, new_stage)
        except TransitionError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        now = datetime.utcnow()
        notes = sanitize_text(notes, 2000) if notes else None
        application.pipeline_stage = new_stage
        application.stage_changed_at = now
        application.stage_changed_by = user.id
        if notes:
            application.workflow_notes = notes

        self.db.add(
            StageHistory(
                application_id=application.id,
                from_stage=previous_stage,
                to_stage=new_stage,
                changed_by=user.id,
                notes=notes,
                changed_at=now,
            )
        )
        system_text = (
            f"Stage changed from {STAGE_CONFIGURATIONS[previous_stage].title} to {target.title}"
            + (f": {notes}" if notes else "")
        )
        self.db.add(
            ApplicationComment(
                application_id=application.id,
                author_id=None,
                comment_text=system_text,
                comment_type="system_notification",
                mentions=[],
                is_deleted=False,
                created_at=now,
            )
        )

        lead = self._lead_for(application)
        if lead:
            lead.application_status = new_stage
            if new_stage == "profile_created":
                lead.converted_to_hire = True

        record_event(
            self.db,
            action="application_stage_change",
            entity_type="guard_application",
            entity_id=application.id,
            organization_id=user.organization_id,
            actor_id=user.id,
            previous_state={"stage": previous_stage},
            new_state={"stage": new_stage},
            reason=notes,
            commit=False,
        )
        self.db.commit()
        self.db.refresh(application)
        logger.info(f"🔄 Application {application.id}: {previous_stage} -> {new_stage} by user {user.id}")

        if target.email_template:
            try:
                await send_application_stage_email(
                    application.email, application.first_name, target.email_template
                )
            except EmailDeliveryError as e:
                logger.warning(f"⚠️ Stage email {target.email_template} not sent: {e}")

        hub.publish(
            board_channel(user.organization_id, BOARD),
            "stage_changed",
            {
                "applicationId": application.id,
                "fromStage": previous_stage,
                "toStage": new_stage,
                "changedBy": user.id,
                "changedAt": now.isoformat(),
            },
        )
        return application

    def get_history(self, application_id: int, user: User) -> list[StageHistory]:
        application = self.get_application(application_id, user)
        return (
            self.db.query(StageHistory)
            .filter(StageHistory.application_id == application.id)
            .order_by(StageHistory.changed_at.desc(), StageHistory.id.desc())
            .all()
        )

    # ========================================================================
    # BULK ACTIONS
    # ========================================================================

    async def bulk_action(self, request: BulkActionRequest, user: User) -> dict:
        results = []
        for application_id in request.applicationIds:
            try:
                await self._apply_bulk_action(application_id, request.action, request.data, user)
                results.append({"applicationId": application_id, "success": True})
            except HTTPException as e:
                self.db.rollback()
                detail = e.detail["message"] if isinstance(e.detail, dict) else e.detail
                results.append({"applicationId": application_id, "success": False, "error": detail})

        succeeded = sum(1 for r in results if r["success"])
        logger.info(f"📊 Bulk {request.action}: {succeeded}/{len(results)} applications updated")
        return {
            "status": "completed" if succeeded == len(results) else "partial",
            "total": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }

    async def _apply_bulk_action(self, application_id: int, action: str, data: dict, user: User) -> None:
        if action == "stage_change":
            await self.transition(application_id, data.get("newStage", ""), user, data.get("notes"))
            return

        application = self.get_application(application_id, user)
        if action == "assign":
            manager_id = data.get("assignedTo")
            manager = (
                self.db.query(User)
                .filter(
                    User.id == manager_id,
                    User.organization_id == user.organization_id,
                    User.role.in_(("admin", "manager")),
                    User.is_active == True,  # noqa: E712
                )
                .first()
            )
            if not manager:
                raise HTTPException(status_code=400, detail="Assignee must be an active manager")
            application.assigned_to = manager.id
        elif action == "priority_change":
            priority = data.get("priority")
            if not isinstance(priority, int) or not 1 <= priority <= 10:
                raise HTTPException(status_code=400, detail="Priority must be between 1 and 10")
            application.priority = priority
        elif action == "comment":
            text = str(data.get("commentText") or "").strip()
            if not text:
                raise HTTPException(status_code=400, detail="Comment text is required")
            await self.create_comment(application.id, CommentCreate(commentText=text[:5000]), user)
            return
        else:
            raise HTTPException(status_code=400, detail=f"Unknown bulk action: {action}")
        self.db.commit()

    # ========================================================================
    # COMMENTS
    # ========================================================================

    async def create_comment(self, application_id: int, data: CommentCreate, user: User) -> ApplicationComment:
        application = self.get_application(application_id, user)
        text = sanitize_html(data.commentText).strip()
        if not text:
            raise HTTPException(status_code=400, detail="Comment text is required")

        if data.parentCommentId:
            parent = (
                self.db.query(ApplicationComment)
                .filter(
                    ApplicationComment.id == data.parentCommentId,
                    ApplicationComment.application_id == application.id,
                )
                .first()
            )
            if not parent:
                raise HTTPException(status_code=400, detail="Parent comment does not belong to this application")

        mentioned_ids = [int(token) for token in extract_mentions(text) if token.isdigit()]
        mentioned_users = []
        if mentioned_ids:
            mentioned_users = (
                self.db.query(User)
                .filter(User.id.in_(mentioned_ids), User.organization_id == user.organization_id)
                .all()
            )

        comment = ApplicationComment(
            application_id=application.id,
            author_id=user.id,
            comment_text=text,
            comment_type=data.commentType,
            parent_comment_id=data.parentCommentId,
            mentions=[str(u.id) for u in mentioned_users],
            is_deleted=False,
        )
        self.db.add(comment)
        self.db.commit()
        self.db.refresh(comment)

        if mentioned_users:
            await NotificationService(self.db).notify_many(
                user.organization_id,
                [u.id for u in mentioned_users if u.id != user.id],
                title="You were mentioned in an application comment",
                message=f"{user.full_name} mentioned you on {application.first_name} {application.last_name}'s application",
                category="hiring",
                entity_type="guard_application",
                entity_id=application.id,
            )

        hub.publish(
            board_channel(user.organization_id, BOARD),
            "comment_added",
            {"applicationId": application.id, "commentId": comment.id, "authorId": user.id},
        )
        return comment

    def list_comments(self, application_id: int, user: User, include_deleted: bool = False) -> list[dict]:
        """Top-level comments with replies nested under their parents"""
        application = self.get_application(application_id, user)
        query = self.db.query(ApplicationComment).filter(ApplicationComment.application_id == application.id)
        if not include_deleted:
            query = query.filter(ApplicationComment.is_deleted == False)  # noqa: E712
        comments = query.order_by(ApplicationComment.created_at, ApplicationComment.id).all()

        author_ids = {c.author_id for c in comments if c.author_id}
        names = {}
        if author_ids:
            names = {u.id: u.full_name for u in self.db.query(User).filter(User.id.in_(author_ids)).all()}

        nodes = {c.id: serialize_comment(c, names) for c in comments}
        roots = []
        for comment in comments:
            node = nodes[comment.id]
            parent = nodes.get(comment.parent_comment_id) if comment.parent_comment_id else None
            if parent is not None:
                parent["replies"].append(node)
            else:
                roots.append(node)
        return roots

    def _get_comment(self, comment_id: int, user: User) -> ApplicationComment:
        comment = (
            self.db.query(ApplicationComment)
            .join(GuardApplication, GuardApplication.id == ApplicationComment.application_id)
            .filter(
                ApplicationComment.id == comment_id,
                GuardApplication.organization_id == user.organization_id,
                ApplicationComment.is_deleted == False,  # noqa: E712
            )
            .first()
        )
        if not comment:
            raise HTTPException(status_code=404, detail="Comment not found")
        return comment

    def update_comment(self, comment_id: int, text: str, user: User) -> ApplicationComment:
        comment = self._get_comment(comment_id, user)
        if comment.author_id != user.id:
            raise HTTPException(status_code=403, detail="Only the author can edit this comment")
        comment.comment_text = sanitize_html(text).strip()
        comment.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(comment)
        return comment

    def delete_comment(self, comment_id: int, user: User) -> dict:
        comment = self._get_comment(comment_id, user)
        if comment.author_id != user.id and user.role != "admin":
            raise HTTPException(status_code=403, detail="Only the author or an administrator can delete this comment")
        comment.is_deleted = True
        comment.updated_at = datetime.utcnow()
        self.db.commit()
        return {"message": "Comment deleted"}

    # ========================================================================
    # PRESENCE
    # ========================================================================

    def join_board(self, user: User) -> list[dict]:
        return hub.join(board_channel(user.organization_id, BOARD), user.id, user.full_name)

    def heartbeat(self, user: User) -> list[dict]:
        channel = board_channel(user.organization_id, BOARD)
        if not hub.heartbeat(channel, user.id):
            return hub.join(channel, user.id, user.full_name)
        return hub.list_presence(channel)

    def leave_board(self, user: User) -> None:
        hub.leave(board_channel(user.organization_id, BOARD), user.id)

    def list_presence(self, user: User) -> list[dict]:
        return hub.list_presence(board_channel(user.organization_id, BOARD))
