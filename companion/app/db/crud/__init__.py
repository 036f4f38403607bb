"""CRUD operations for the companion API."""

from companion.app.db.crud.correction import (
    count_corrections_by_status,
    create_correction,
    delete_correction,
    edit_correction,
    get_correction,
    list_corrections,
    list_related_corrections,
    review_correction,
)
from companion.app.db.crud.feedback import (
    create_feedback,
    delete_feedback,
    get_feedback,
    list_feedback,
    review_feedback,
)
from companion.app.db.crud.user import (
    change_role,
    create_user,
    credit_accepted_feedback,
    delete_user_account,
    get_user_by_id,
    get_user_by_username,
    list_users,
    record_correction_reviewed,
    record_feedback_submitted,
    set_ban,
    update_profile,
)

__all__ = [
    "count_corrections_by_status",
    "create_correction",
    "delete_correction",
    "edit_correction",
    "get_correction",
    "list_corrections",
    "list_related_corrections",
    "review_correction",
    "create_feedback",
    "delete_feedback",
    "get_feedback",
    "list_feedback",
    "review_feedback",
    "change_role",
    "create_user",
    "credit_accepted_feedback",
    "delete_user_account",
    "get_user_by_id",
    "get_user_by_username",
    "list_users",
    "record_correction_reviewed",
    "record_feedback_submitted",
    "set_ban",
    "update_profile",
]
