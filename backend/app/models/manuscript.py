from __future__ import annotations

from enum import Enum


class ManuscriptStatus(str, Enum):
    """
    稿件生命周期状态枚举。

    中文注释:
    - submitted 是唯一初始状态；published / reject / rejected 为终态。
    - accepted / rejected 为历史遗留的决策状态，保留以兼容旧数据。
    - 管理员可以从任意状态设置为任意状态，这里不强制状态图，只负责 decision_date 规则。
    """

    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    INTERNAL_REVIEW = "internal_review"
    EXTERNAL_REVIEW = "external_review"
    REVISION_REQUESTED = "revision_requested"
    ACCEPT_WITHOUT_CORRECTION = "accept_without_correction"
    ACCEPT_MINOR_CORRECTIONS = "accept_minor_corrections"
    ACCEPT_MAJOR_CORRECTIONS = "accept_major_corrections"
    REJECT = "reject"
    PUBLISHED = "published"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @classmethod
    def initial(cls) -> "ManuscriptStatus":
        return cls.SUBMITTED

    @property
    def is_decision(self) -> bool:
        return self in DECISION_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


# 设置为这些状态时写入 decision_date，其余状态清空
DECISION_STATUSES = frozenset(
    {
        ManuscriptStatus.ACCEPTED,
        ManuscriptStatus.REJECTED,
        ManuscriptStatus.ACCEPT_WITHOUT_CORRECTION,
        ManuscriptStatus.ACCEPT_MINOR_CORRECTIONS,
        ManuscriptStatus.ACCEPT_MAJOR_CORRECTIONS,
        ManuscriptStatus.PUBLISHED,
        ManuscriptStatus.REJECT,
    }
)

TERMINAL_STATUSES = frozenset(
    {
        ManuscriptStatus.PUBLISHED,
        ManuscriptStatus.REJECT,
        ManuscriptStatus.REJECTED,
    }
)

# Dashboard 的 "completed" 统计只认历史决策状态
COMPLETED_STATUSES = frozenset({ManuscriptStatus.ACCEPTED, ManuscriptStatus.REJECTED})


def normalize_status(value: str | ManuscriptStatus | None) -> ManuscriptStatus | None:
    if value is None:
        return None
    if isinstance(value, ManuscriptStatus):
        return value
    v = str(value).strip().lower().replace(" ", "_")
    if not v:
        return None
    try:
        return ManuscriptStatus(v)
    except ValueError:
        return None

