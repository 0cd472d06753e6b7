from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from fastapi import BackgroundTasks

from app.core.access_policy import (
    ProfileKind,
    can_read_review,
    can_write_review,
    display_name,
    fetch_profiles,
    mask_email,
)
from app.core.config import PortalConfig
from app.core.errors import (
    DuplicateAssignment,
    NotFound,
    PermissionDenied,
    ValidationFailed,
    is_unique_violation,
    persistence_error,
)
from app.lib.api_client import create_user_supabase_client, rows, supabase_admin
from app.models.reviews import OPEN_REVIEW_STATUSES, ReviewStatus, ReviewWorkflow, is_overdue
from app.models.user import Role, Session, normalize_role
from app.services import storage_service
from app.services.manuscript_service import ManuscriptService, utcnow
from app.services.notification_service import NotificationDispatcher
from app.services.storage_service import UploadedFile

logger = logging.getLogger("portal.reviews")

ASSIGN_RPC = "assign_reviewers"


def compute_new_reviewers(requested: Iterable[str], existing: Iterable[str]) -> List[str]:
    """
    requested − existing，保持请求顺序并去重。
    """
    existing_set = {str(e) for e in existing}
    out: List[str] = []
    for rid in requested:
        rid = str(rid).strip()
        if rid and rid not in existing_set and rid not in out:
            out.append(rid)
    return out


def build_review_rows(
    manuscript_id: str,
    reviewer_ids: Iterable[str],
    now: datetime,
    due_days: int,
) -> List[Dict[str, Any]]:
    due = now + timedelta(days=due_days)
    return [
        {
            "manuscript_id": manuscript_id,
            "reviewer_id": rid,
            "status": ReviewStatus.ASSIGNED.value,
            "assigned_date": now.isoformat(),
            "due_date": due.isoformat(),
        }
        for rid in reviewer_ids
    ]


def with_overdue_flag(review: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    out = dict(review)
    out["is_overdue"] = is_overdue(review, now)
    return out


class ReviewService:
    """
    审稿分配与提交。

    中文注释:
    1) 分配：同一 (manuscript, reviewer) 至多一条记录；插入审稿记录与稿件进入 under_review
       在数据库函数 assign_reviewers 中同一事务完成，避免“有审稿记录但稿件仍是 submitted”。
    2) 并发分配时由 (manuscript_id, reviewer_id) 唯一约束兜底，23505 统一报告为重复分配。
    3) 逾期（is_overdue）读时计算，只有 sweep_overdue 会把状态落库为 overdue。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        reader: Optional[Callable[[Session], Any]] = None,
        notifier: Optional[NotificationDispatcher] = None,
        config: Optional[PortalConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        manuscripts: Optional[ManuscriptService] = None,
    ):
        self._client = client if client is not None else supabase_admin
        self._reader = reader
        self._config = config or PortalConfig.from_env()
        self._notifier = notifier
        self._clock = clock
        self._manuscripts = manuscripts or ManuscriptService(
            client=self._client,
            reader=reader,
            notifier=notifier,
            config=self._config,
            clock=clock,
        )

    @property
    def notifier(self) -> NotificationDispatcher:
        if self._notifier is None:
            self._notifier = NotificationDispatcher(config=self._config)
        return self._notifier

    @property
    def workflow(self) -> ReviewWorkflow:
        return ReviewWorkflow(self._config.review_workflow)

    def _read_client(self, session: Session) -> Any:
        if self._reader is not None:
            return self._reader(session)
        if session.access_token:
            return create_user_supabase_client(session.access_token)
        return self._client

    def _load_review(self, review_id: str) -> Dict[str, Any]:
        try:
            resp = self._client.table("reviews").select("*").eq("id", review_id).execute()
        except Exception as e:
            raise persistence_error("Loading review", e) from e
        found = rows(resp)
        if not found:
            raise NotFound("Review not found")
        return found[0]

    def _update_review(self, review_id: str, updates: Dict[str, Any], *, action: str) -> Dict[str, Any]:
        try:
            resp = self._client.table("reviews").update(updates).eq("id", review_id).execute()
        except Exception as e:
            raise persistence_error(action, e) from e
        found = rows(resp)
        if not found:
            raise NotFound("Review not found")
        return found[0]

    def _require_reviewer_accounts(self, reviewer_ids: List[str]) -> None:
        """
        只有 user_roles 中角色为 reviewer 的账号可以被分配。
        """
        try:
            found = rows(
                self._client.table("user_roles").select("user_id, role").in_("user_id", reviewer_ids).execute()
            )
        except Exception as e:
            raise persistence_error("Loading reviewer roles", e) from e
        reviewers = {str(r.get("user_id")) for r in found if normalize_role(r.get("role")) == Role.REVIEWER}
        invalid = [rid for rid in reviewer_ids if rid not in reviewers]
        if invalid:
            raise ValidationFailed(f"Not a reviewer account: {', '.join(invalid)}")

    # === 分配 ===

    def assign_reviewers(
        self,
        session: Session,
        manuscript_id: str,
        reviewer_ids: Iterable[str],
        *,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> List[Dict[str, Any]]:
        if not session.is_admin:
            raise PermissionDenied("Only administrators can assign reviewers")
        requested = [str(r).strip() for r in reviewer_ids if str(r).strip()]
        if not requested:
            raise ValidationFailed("Select at least one reviewer")

        manuscript = self._manuscripts.load(manuscript_id)
        if str(manuscript.get("author_id")) in requested:
            raise ValidationFailed("Authors cannot review their own manuscript")
        self._require_reviewer_accounts(list(dict.fromkeys(requested)))

        try:
            existing = rows(
                self._client.table("reviews").select("reviewer_id").eq("manuscript_id", manuscript_id).execute()
            )
        except Exception as e:
            raise persistence_error("Loading existing reviews", e) from e

        new_reviewers = compute_new_reviewers(requested, (r.get("reviewer_id") for r in existing))
        if not new_reviewers:
            raise DuplicateAssignment()

        review_rows = build_review_rows(manuscript_id, new_reviewers, self._clock(), self._config.review_due_days)
        try:
            resp = self._client.rpc(
                ASSIGN_RPC,
                {"p_manuscript_id": manuscript_id, "p_reviews": review_rows},
            ).execute()
        except Exception as e:
            if is_unique_violation(e):
                raise DuplicateAssignment("Reviewer was assigned concurrently, please refresh") from e
            raise persistence_error("Assigning reviewers", e) from e

        created = rows(resp) or review_rows
        logger.info(
            "manuscript %s: assigned %d reviewer(s), skipped %d already assigned",
            manuscript_id,
            len(created),
            len(set(requested)) - len(new_reviewers),
        )
        self.notifier.reviewers_assigned(manuscript, created, background_tasks)
        return created

    # === 审稿人 ===

    def list_for_reviewer(self, session: Session) -> List[Dict[str, Any]]:
        try:
            reviews = rows(
                self._client.table("reviews")
                .select("*")
                .eq("reviewer_id", session.user_id)
                .order("assigned_date", desc=True)
                .execute()
            )
            manuscript_ids = list(dict.fromkeys(str(r.get("manuscript_id")) for r in reviews))
            manuscripts = {}
            if manuscript_ids:
                manuscripts = {
                    str(m.get("id")): m
                    for m in rows(
                        self._client.table("manuscripts")
                        .select("id, title, abstract, keywords, status, file_path, file_name")
                        .in_("id", manuscript_ids)
                        .execute()
                    )
                }
        except Exception as e:
            raise persistence_error("Loading review assignments", e) from e

        now = self._clock()
        out = []
        for review in reviews:
            item = with_overdue_flag(review, now)
            item["manuscript"] = manuscripts.get(str(review.get("manuscript_id")))
            out.append(item)
        return out

    def start_review(self, session: Session, review_id: str) -> Dict[str, Any]:
        review = self._load_review(review_id)
        if not can_write_review(session, review):
            raise PermissionDenied("This review is not assigned to you")
        if review.get("status") != ReviewStatus.ASSIGNED.value:
            return with_overdue_flag(review, self._clock())
        updated = self._update_review(
            review_id, {"status": ReviewStatus.IN_PROGRESS.value}, action="Starting review"
        )
        return with_overdue_flag(updated, self._clock())

    def submit_review(
        self,
        session: Session,
        review_id: str,
        *,
        rating: Any,
        recommendation: Optional[str],
        comments: Optional[str],
        assessment_file: Optional[UploadedFile] = None,
        reviewed_manuscript_file: Optional[UploadedFile] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Dict[str, Any]:
        try:
            rating_value = int(rating)
        except (TypeError, ValueError):
            raise ValidationFailed("Rating must be an integer between 1 and 5")
        if rating_value < 1 or rating_value > 5:
            raise ValidationFailed("Rating must be an integer between 1 and 5")
        recommendation = (recommendation or "").strip()
        comments = (comments or "").strip()
        if not recommendation:
            raise ValidationFailed("Recommendation is required")
        if not comments:
            raise ValidationFailed("Comments are required")

        review = self._load_review(review_id)
        if not can_write_review(session, review):
            raise PermissionDenied("This review is not assigned to you")
        if review.get("status") not in {s.value for s in OPEN_REVIEW_STATUSES}:
            raise ValidationFailed("This review has already been submitted")

        updates: Dict[str, Any] = {
            "rating": rating_value,
            "recommendation": recommendation,
            "comments": comments,
        }
        bucket = self._config.storage_bucket
        uploaded: List[str] = []
        try:
            if assessment_file is not None and assessment_file.content:
                path = storage_service.build_object_path(
                    user_id=session.user_id,
                    kind=storage_service.ASSESSMENTS,
                    filename=assessment_file.filename,
                    prefix=review_id,
                )
                storage_service.upload_bytes(
                    bucket=bucket, path=path, content=assessment_file.content, content_type=assessment_file.content_type
                )
                updates["assessment_file_path"] = path
                uploaded.append(path)
            if reviewed_manuscript_file is not None and reviewed_manuscript_file.content:
                path = storage_service.build_object_path(
                    user_id=session.user_id,
                    kind=storage_service.REVIEWED,
                    filename=reviewed_manuscript_file.filename,
                    prefix=review_id,
                )
                storage_service.upload_bytes(
                    bucket=bucket,
                    path=path,
                    content=reviewed_manuscript_file.content,
                    content_type=reviewed_manuscript_file.content_type,
                )
                updates["reviewed_manuscript_path"] = path
                uploaded.append(path)
        except Exception as e:
            storage_service.discard_objects(bucket=bucket, paths=uploaded)
            raise persistence_error("Uploading review files", e) from e

        now = self._clock()
        updates["status"] = self.workflow.submitted_status.value
        updates["completed_date"] = now.isoformat()
        try:
            updated = self._update_review(review_id, updates, action="Submitting review")
        except Exception:
            storage_service.discard_objects(bucket=bucket, paths=uploaded)
            raise

        logger.info("review %s submitted (%s)", review_id, updates["status"])
        try:
            manuscript = self._manuscripts.load(str(review.get("manuscript_id")))
        except Exception as e:
            logger.warning("review %s submitted but manuscript lookup failed: %s", review_id, e)
        else:
            self.notifier.review_submitted(manuscript, updated, background_tasks)
        return with_overdue_flag(updated, now)

    # === 管理员 ===

    def decide_review(
        self,
        session: Session,
        review_id: str,
        *,
        approve: bool,
        notes: Optional[str] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Dict[str, Any]:
        if not session.is_admin:
            raise PermissionDenied("Only administrators can approve reviews")
        review = self._load_review(review_id)
        if review.get("status") not in {ReviewStatus.PENDING_ADMIN_APPROVAL.value, ReviewStatus.COMPLETED.value}:
            raise ValidationFailed("Only submitted reviews can be approved or rejected")

        status = ReviewStatus.ADMIN_APPROVED if approve else ReviewStatus.ADMIN_REJECTED
        updates: Dict[str, Any] = {"status": status.value}
        if notes is not None:
            updates["admin_notes"] = notes.strip() or None
        updated = self._update_review(review_id, updates, action="Recording review decision")

        if approve:
            manuscript = self._manuscripts.load(str(review.get("manuscript_id")))
            self.notifier.review_feedback(manuscript, background_tasks)
        return updated

    def list_for_manuscript(self, session: Session, manuscript_id: str) -> List[Dict[str, Any]]:
        """
        按角色过滤某稿件的审稿记录：管理员全部（附审稿人信息），审稿人仅自己，作者仅已批准的。
        """
        manuscript = self._manuscripts.load(manuscript_id)
        try:
            reviews = rows(
                self._client.table("reviews")
                .select("*")
                .eq("manuscript_id", manuscript_id)
                .order("assigned_date", desc=False)
                .execute()
            )
        except Exception as e:
            raise persistence_error("Loading reviews", e) from e

        visible = [r for r in reviews if can_read_review(session, r, manuscript)]
        if not visible and not session.is_admin and str(manuscript.get("author_id")) != session.user_id:
            if not any(str(r.get("reviewer_id")) == session.user_id for r in reviews):
                raise PermissionDenied("You do not have access to this manuscript")

        now = self._clock()
        out = [with_overdue_flag(r, now) for r in visible]
        if session.is_admin:
            reviewers = fetch_profiles(
                self._read_client(session), (r.get("reviewer_id") for r in out), ProfileKind.REVIEWER
            )
            for item in out:
                profile = reviewers.get(str(item.get("reviewer_id"))) or {}
                item["reviewer"] = {
                    "first_name": profile.get("first_name") or "",
                    "last_name": profile.get("last_name") or "",
                    "email": mask_email(session.role, session.user_id, item.get("reviewer_id"), profile.get("email")),
                }
        return out

    def pending_review_board(self, session: Session) -> List[Dict[str, Any]]:
        """
        管理员“审稿管理”面板：待批准的审稿按稿件分组，附作者/审稿人姓名与最终文件。

        中文注释:
        - 后端没有跨表 join，这里显式做聚合；profiles 读取受限时降级为占位姓名。
        """
        if not session.is_admin:
            raise PermissionDenied("Only administrators can manage reviews")
        try:
            reviews = rows(
                self._client.table("reviews")
                .select(
                    "id, reviewer_id, manuscript_id, status, completed_date, "
                    "assessment_file_path, reviewed_manuscript_path, comments, recommendation, rating"
                )
                .eq("status", ReviewStatus.PENDING_ADMIN_APPROVAL.value)
                .order("completed_date", desc=True)
                .execute()
            )
            manuscript_ids = list(dict.fromkeys(str(r.get("manuscript_id")) for r in reviews))
            if not manuscript_ids:
                return []
            manuscripts = {
                str(m.get("id")): m
                for m in rows(
                    self._client.table("manuscripts")
                    .select("id, title, author_id, status")
                    .in_("id", manuscript_ids)
                    .execute()
                )
            }
            documents = rows(
                self._client.table("final_documents")
                .select("id, manuscript_id, file_name, file_path, upload_date")
                .in_("manuscript_id", manuscript_ids)
                .order("upload_date", desc=True)
                .execute()
            )
        except Exception as e:
            raise persistence_error("Loading review submissions", e) from e

        reader = self._read_client(session)
        authors = fetch_profiles(
            reader, (m.get("author_id") for m in manuscripts.values()), ProfileKind.AUTHOR
        )
        reviewers = fetch_profiles(reader, (r.get("reviewer_id") for r in reviews), ProfileKind.REVIEWER)

        board = []
        for manuscript_id in manuscript_ids:
            manuscript = manuscripts.get(manuscript_id) or {}
            author = authors.get(str(manuscript.get("author_id"))) if manuscript else None
            items = []
            for review in (r for r in reviews if str(r.get("manuscript_id")) == manuscript_id):
                reviewer = reviewers.get(str(review.get("reviewer_id"))) or {}
                items.append(
                    {
                        **review,
                        "reviewer": {
                            "first_name": reviewer.get("first_name") or "",
                            "last_name": reviewer.get("last_name") or "",
                            "email": reviewer.get("email") or "",
                        },
                    }
                )
            board.append(
                {
                    "manuscript_id": manuscript_id,
                    "title": manuscript.get("title") or "",
                    "author_name": display_name(author),
                    "status": manuscript.get("status") or "",
                    "reviews": items,
                    "final_documents": [d for d in documents if str(d.get("manuscript_id")) == manuscript_id],
                }
            )
        return board

    def sweep_overdue(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        把已逾期但仍未完成的审稿落库为 overdue（幂等，由 cron 触发）。
        """
        now = now or self._clock()
        try:
            candidates = rows(
                self._client.table("reviews")
                .select("id, status, due_date, completed_date")
                .in_("status", [ReviewStatus.ASSIGNED.value, ReviewStatus.IN_PROGRESS.value])
                .lt("due_date", now.isoformat())
                .execute()
            )
        except Exception as e:
            raise persistence_error("Loading reviews for overdue sweep", e) from e

        overdue_ids = [str(r["id"]) for r in candidates if is_overdue(r, now)]
        if overdue_ids:
            try:
                self._client.table("reviews").update({"status": ReviewStatus.OVERDUE.value}).in_(
                    "id", overdue_ids
                ).execute()
            except Exception as e:
                raise persistence_error("Marking reviews overdue", e) from e
        logger.info("overdue sweep: %d candidate(s), %d marked", len(candidates), len(overdue_ids))
        return {"processed_count": len(candidates), "marked_overdue": len(overdue_ids)}
