"""Tests for user, feedback and correction CRUD helpers."""

import pytest

from companion.app.db.crud import (
    change_role,
    count_corrections_by_status,
    create_correction,
    create_feedback,
    credit_accepted_feedback,
    delete_user_account,
    edit_correction,
    get_correction,
    get_user_by_id,
    list_corrections,
    list_feedback,
    list_users,
    record_correction_reviewed,
    record_feedback_submitted,
    review_correction,
    review_feedback,
    update_profile,
)


@pytest.mark.asyncio
async def test_removing_last_role_falls_back_to_user(db):
    seeded = await db.seed_user("alice", roles=["contributor"])
    async with db.session_maker() as session:
        user = await get_user_by_id(session, seeded.id)
        await change_role(session, user, "remove", "contributor")
        await session.commit()

    async with db.session_maker() as session:
        assert (await get_user_by_id(session, seeded.id)).roles == ["user"]


@pytest.mark.asyncio
async def test_adding_existing_role_is_idempotent(db):
    seeded = await db.seed_user("alice", roles=["user", "partner"])
    async with db.session_maker() as session:
        user = await get_user_by_id(session, seeded.id)
        await change_role(session, user, "add", "partner")
        assert user.roles == ["user", "partner"]


@pytest.mark.asyncio
async def test_update_profile_merges_preferences(db):
    seeded = await db.seed_user("alice")
    async with db.session_maker() as session:
        user = await get_user_by_id(session, seeded.id)
        await update_profile(session, user, {"preferences": {"publicProfile": False}, "bio": "hi"})
        await session.commit()

    async with db.session_maker() as session:
        user = await get_user_by_id(session, seeded.id)
        assert user.bio == "hi"
        assert user.preferences["publicProfile"] is False
        assert user.preferences["showContributions"] is True


@pytest.mark.asyncio
async def test_counters_are_incremented_in_place(db):
    seeded = await db.seed_user("alice")
    async with db.session_maker() as session:
        await record_feedback_submitted(session, seeded.id, "bug")
        await record_feedback_submitted(session, seeded.id, "general")
        await credit_accepted_feedback(session, seeded.id, 5)
        await session.commit()

    async with db.session_maker() as session:
        user = await get_user_by_id(session, seeded.id)
        assert user.feedback_submitted == 2
        assert user.bugs_reported == 1
        assert user.contribution_points == 5
        assert user.corrections_accepted == 1


@pytest.mark.asyncio
async def test_list_and_review_feedback(db):
    async with db.session_maker() as session:
        for i in range(3):
            await create_feedback(
                session,
                type="bug" if i else "feature",
                title=f"t{i}",
                description="d",
                session_id="session_x",
            )
        await session.commit()

        items, total = await list_feedback(session, {"type": "bug"}, page=1, limit=1)
        assert total == 2
        assert len(items) == 1

        reviewed = await review_feedback(session, items[0], reviewer_id="admin1", status="new")
        assert reviewed.reviewed_by is None

        reviewed = await review_feedback(
            session, items[0], reviewer_id="admin1", admin_notes=None, set_notes=True
        )
        assert reviewed.admin_notes is None
        assert reviewed.status == "new"


async def _seed_correction(session, **fields):
    data = {
        "entity_type": "item",
        "entity_id": "ak-74",
        "proposed_data": {"price": 120},
        "changes": {"price": {"from": 100, "to": 120}},
    }
    data.update(fields)
    return await create_correction(session, **data)


@pytest.mark.asyncio
async def test_review_correction_only_once(db):
    async with db.session_maker() as session:
        correction = await _seed_correction(session)
        await session.commit()

        assert await review_correction(session, correction, "mod1", "approved", "ok") is True
        assert correction.status == "approved"
        assert correction.reviewed_by == "mod1"

        assert await review_correction(session, correction, "mod2", "rejected") is False
        await session.commit()

    async with db.session_maker() as session:
        stored = await get_correction(session, correction.id)
        assert stored.status == "approved"
        assert stored.reviewed_by == "mod1"
        assert stored.review_notes == "ok"


@pytest.mark.asyncio
async def test_edit_correction_keeps_reason_unless_set(db):
    async with db.session_maker() as session:
        correction = await _seed_correction(session, reason="Original reason text")
        await session.commit()

        applied = await edit_correction(
            session,
            correction,
            proposed_data={"price": 130},
            changes={"price": {"from": 100, "to": 130}},
        )
        assert applied is True
        assert correction.reason == "Original reason text"
        assert correction.changes == {"price": {"from": 100, "to": 130}}

        assert await edit_correction(session, correction, reason=None, set_reason=True)
        assert correction.reason is None


@pytest.mark.asyncio
async def test_list_and_count_corrections(db):
    async with db.session_maker() as session:
        await _seed_correction(session)
        await _seed_correction(session, status="approved")
        await _seed_correction(session, entity_type="npc", entity_id="prapor")
        await session.commit()

        items, total = await list_corrections(session, {"entity_type": "item"}, page=2, limit=1)
        assert total == 2
        assert len(items) == 1

        assert await count_corrections_by_status(session, {}) == {"pending": 2, "approved": 1}


@pytest.mark.asyncio
async def test_correction_review_counters(db):
    seeded = await db.seed_user("alice")
    async with db.session_maker() as session:
        await record_correction_reviewed(session, seeded.id, approved=True, points=10)
        await record_correction_reviewed(session, seeded.id, approved=False)
        await session.commit()

    async with db.session_maker() as session:
        user = await get_user_by_id(session, seeded.id)
        assert user.data_corrections == 2
        assert user.corrections_accepted == 1
        assert user.contribution_points == 10


@pytest.mark.asyncio
async def test_list_users_sorted_and_filtered(db):
    await db.seed_user("carol", contribution_points=5)
    await db.seed_user("alice", roles=["user", "moderator"], contribution_points=50)
    await db.seed_user("bob", contribution_points=20)

    async with db.session_maker() as session:
        users, total = await list_users(session, sort_by="contributionPoints", descending=True)
        assert total == 3
        assert [u.username for u in users] == ["alice", "bob", "carol"]

        users, total = await list_users(session, role="moderator")
        assert [u.username for u in users] == ["alice"]

        users, total = await list_users(session, search="AR", sort_by="username", descending=False)
        assert [u.username for u in users] == ["carol"]


@pytest.mark.asyncio
async def test_delete_user_account_anonymizes_contributions(db):
    seeded = await db.seed_user("alice")
    async with db.session_maker() as session:
        feedback = await create_feedback(
            session,
            type="bug",
            title="t",
            description="d",
            session_id="session_x",
            user_id=seeded.id,
            is_anonymous=False,
        )
        correction = await _seed_correction(session, user_id=seeded.id)
        await session.commit()

        user = await get_user_by_id(session, seeded.id)
        await delete_user_account(session, user)
        await session.commit()

    async with db.session_maker() as session:
        assert await get_user_by_id(session, seeded.id) is None
        items, _ = await list_feedback(session, {}, page=1, limit=10)
        assert [(f.id, f.user_id, f.is_anonymous) for f in items] == [(feedback.id, None, True)]
        assert (await get_correction(session, correction.id)).user_id is None
