"""Integration tests for InvitationStore against a real database."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from src.onboarding.core.exceptions import (
    AlreadyUsed,
    Conflict,
    Expired,
    Invalid,
    NotFound,
    Unavailable,
)
from src.onboarding.core.notifications.email import EmailResult
from src.onboarding.core.security import hash_token
from src.onboarding.models import (
    AgentPage,
    InvitationSource,
    InvitationStatus,
    User,
    UserInvitation,
    UserStatus,
)
from src.onboarding.models.base import utc_now
from src.onboarding.repositories import (
    AgentPageRepository,
    InvitationRepository,
    UserRepository,
)
from src.onboarding.services import InvitationStore
from src.onboarding.services.invitation_store import ACCEPTABLE_STATUSES
from tests.factories import UserInvitationFactory
from tests.helpers import count_rows, create_active_user, create_invited_user

pytestmark = pytest.mark.integration


def store_for(session) -> InvitationStore:
    return InvitationStore(
        UserRepository(session),
        InvitationRepository(session),
        AgentPageRepository(session),
        session,
    )


def email_result(success: bool = True, **overrides) -> EmailResult:
    values = {
        "success": success,
        "message_id": "msg-1" if success else None,
        "error": None if success else "provider rejected the message",
        "attempts": 1,
        "timestamp": "2030-01-01T00:00:00+00:00",
        "service_provider": "resend",
    }
    return EmailResult(**{**values, **overrides})


class TestCreateUserWithInvitation:
    async def test_creates_both_rows(self, store, db_session):
        issued = await store.create_user_with_invitation("  Jane.Doe@Example.com ", "Jane", "Doe")

        assert issued.user.email == "jane.doe@example.com"
        assert issued.user.status == UserStatus.INVITED.value
        assert issued.user.username == "janedoe"
        assert issued.user.full_name == "Jane Doe"
        assert issued.invitation.status == InvitationStatus.PENDING.value
        assert issued.invitation.user_id == issued.user.id
        # Only the hash is stored
        assert issued.invitation.token_hash == hash_token(issued.token)
        assert await count_rows(db_session, UserInvitation, user_id=issued.user.id) == 1

    async def test_default_expiry_is_24_hours(self, store):
        before = utc_now()

        issued = await store.create_user_with_invitation("jane@example.com", "Jane", "Doe")

        expected = before + timedelta(hours=24)
        assert abs((issued.invitation.expires_at - expected).total_seconds()) < 5

    async def test_webhook_source_and_expiry(self, store):
        issued = await store.create_user_with_invitation(
            "jane@example.com",
            "Jane",
            "Doe",
            contact_id="ghl-1",
            expires_in=timedelta(days=7),
            source=InvitationSource.WEBHOOK,
            invited_by="webhook:gohighlevel",
        )

        assert issued.user.gohighlevel_contact_id == "ghl-1"
        assert issued.invitation.source == "webhook"
        assert issued.invitation.expires_at > utc_now() + timedelta(days=6)

    async def test_existing_email_is_conflict(self, store, db_session):
        await create_active_user(db_session, email="jane@example.com")

        with pytest.raises(Conflict):
            await store.create_user_with_invitation("JANE@example.com", "Jane", "Doe")

    async def test_contact_id_collision_is_conflict(self, store, db_session):
        await create_active_user(db_session, gohighlevel_contact_id="ghl-1")

        with pytest.raises(Conflict):
            await store.create_user_with_invitation(
                "other@example.com", "Other", "Person", contact_id="ghl-1"
            )
        assert await count_rows(db_session, User, email="other@example.com") == 0

    async def test_default_username_gets_suffix(self, store):
        first = await store.create_user_with_invitation("jane@a.com", "Jane", "A")
        second = await store.create_user_with_invitation("jane@b.com", "Jane", "B")
        third = await store.create_user_with_invitation("jane@c.com", "Jane", "C")

        assert [first.user.username, second.user.username, third.user.username] == [
            "jane",
            "jane2",
            "jane3",
        ]

    async def test_concurrent_invites_get_distinct_usernames(self, session_scope):
        async def invite(email: str):
            async with session_scope() as session:
                issued = await store_for(session).create_user_with_invitation(email, "Jane", "Doe")
                return issued.user.username

        usernames = await asyncio.gather(invite("jane@a.com"), invite("jane@b.com"))

        assert sorted(usernames) == ["jane", "jane2"]
        async with session_scope() as check:
            assert await count_rows(check, User) == 2
            assert await count_rows(check, UserInvitation) == 2

    async def test_invitation_failure_removes_user(
        self, store, session_scope, monkeypatch: pytest.MonkeyPatch
    ):
        def _fail(entity):
            raise OperationalError("INSERT", {}, Exception("connection reset"))

        monkeypatch.setattr(store.invitation_repo, "add", _fail)

        with pytest.raises(Unavailable):
            await store.create_user_with_invitation("jane@example.com", "Jane", "Doe")

        async with session_scope() as session:
            assert await count_rows(session, User) == 0
            assert await count_rows(session, UserInvitation) == 0


class TestOpenInvitationConstraint:
    async def test_second_open_invitation_rejected(self, db_session):
        user, _, _ = await create_invited_user(db_session)
        second, _ = UserInvitationFactory.with_token(
            user_id=user.id, email=user.email, status=InvitationStatus.PENDING.value
        )
        db_session.add(second)

        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    async def test_closed_invitations_do_not_count(self, db_session):
        user, _, _ = await create_invited_user(db_session)
        for status in (InvitationStatus.CANCELLED, InvitationStatus.ACCEPTED):
            closed, _ = UserInvitationFactory.with_token(
                user_id=user.id, email=user.email, status=status.value
            )
            db_session.add(closed)
        await db_session.commit()

        assert await count_rows(db_session, UserInvitation, user_id=user.id) == 3


class TestMarkEmailOutcome:
    async def test_success_marks_sent(self, store, db_session):
        _, invitation, token = await create_invited_user(
            db_session, invitation={"status": InvitationStatus.PENDING.value}
        )

        updated = await store.mark_email_outcome(token, email_result(attempts=2))

        assert updated.id == invitation.id
        assert updated.status == InvitationStatus.SENT.value
        assert updated.email_message_id == "msg-1"
        assert updated.email_provider == "resend"
        assert updated.email_attempts == 2
        assert updated.email_sent_at is not None

    async def test_failure_marks_failed(self, store, db_session):
        _, _, token = await create_invited_user(
            db_session, invitation={"status": InvitationStatus.PENDING.value}
        )

        updated = await store.mark_email_outcome(token, email_result(False, attempts=3))

        assert updated.status == InvitationStatus.FAILED.value
        assert updated.email_error == "provider rejected the message"
        assert updated.email_attempts == 3

    async def test_attempts_accumulate(self, store, db_session):
        _, _, token = await create_invited_user(
            db_session, invitation={"status": InvitationStatus.FAILED.value, "email_attempts": 3}
        )

        updated = await store.mark_email_outcome(token, email_result(attempts=1))

        assert updated.email_attempts == 4
        assert updated.status == InvitationStatus.SENT.value
        assert updated.email_error is None

    async def test_closed_invitation_untouched(self, store, db_session):
        _, _, token = await create_invited_user(
            db_session, invitation={"status": InvitationStatus.CANCELLED.value}
        )

        updated = await store.mark_email_outcome(token, email_result())

        assert updated.status == InvitationStatus.CANCELLED.value
        assert updated.email_message_id is None

    async def test_unknown_token(self, store):
        with pytest.raises(NotFound):
            await store.mark_email_outcome("no-such-token", email_result())


class TestAccept:
    async def test_activates_user_and_consumes_invitation(self, store, db_session):
        user, invitation, token = await create_invited_user(db_session)

        activated = await store.accept(token, "jdoe", "argon2-hash", full_name="Jane Q Doe")

        assert activated.id == user.id
        assert activated.status == UserStatus.ACTIVE.value
        assert activated.username == "jdoe"
        assert activated.password_hash == "argon2-hash"
        assert activated.activated_at is not None
        assert activated.first_name == "Jane"
        assert activated.last_name == "Q Doe"
        await db_session.refresh(invitation)
        assert invitation.status == InvitationStatus.ACCEPTED.value
        assert invitation.accepted_at is not None

    async def test_token_is_single_use(self, store, db_session):
        _, _, token = await create_invited_user(db_session)
        await store.accept(token, "jdoe", "argon2-hash")

        with pytest.raises(AlreadyUsed):
            await store.accept(token, "someoneelse", "argon2-hash")

    async def test_unknown_token(self, store):
        with pytest.raises(NotFound):
            await store.accept("no-such-token", "jdoe", "argon2-hash")

    async def test_expired_token(self, store, db_session):
        user, _, token = await create_invited_user(
            db_session, invitation={"expires_at": utc_now() - timedelta(minutes=1)}
        )

        with pytest.raises(Expired):
            await store.accept(token, "jdoe", "argon2-hash")
        await db_session.refresh(user)
        assert user.status == UserStatus.INVITED.value

    async def test_cancelled_invitation(self, store, db_session):
        _, _, token = await create_invited_user(
            db_session, invitation={"status": InvitationStatus.CANCELLED.value}
        )

        with pytest.raises(Invalid):
            await store.accept(token, "jdoe", "argon2-hash")

    async def test_failed_invitation_cannot_be_accepted(self, store, db_session):
        _, _, token = await create_invited_user(
            db_session, invitation={"status": InvitationStatus.FAILED.value}
        )

        with pytest.raises(Invalid):
            await store.accept(token, "jdoe", "argon2-hash")

    async def test_username_taken(self, store, db_session):
        await create_active_user(db_session, username="taken")
        _, invitation, token = await create_invited_user(db_session)

        with pytest.raises(Conflict):
            await store.accept(token, "taken", "argon2-hash")
        await db_session.refresh(invitation)
        assert invitation.status == InvitationStatus.SENT.value

    async def test_concurrent_acceptance_has_one_winner(self, db_session, session_scope):
        _, invitation, token = await create_invited_user(db_session)

        async def accept(username: str):
            async with session_scope() as session:
                return await store_for(session).accept(token, username, "argon2-hash")

        results = await asyncio.gather(accept("first"), accept("second"), return_exceptions=True)

        winners = [r for r in results if isinstance(r, User)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1 and isinstance(losers[0], AlreadyUsed)
        async with session_scope() as check:
            assert await count_rows(check, User, status=UserStatus.ACTIVE.value) == 1
            assert await count_rows(check, User, username=winners[0].username) == 1
            stored = await check.get(UserInvitation, invitation.id)
        assert stored.status == InvitationStatus.ACCEPTED.value

    async def test_accepted_invitation_cannot_transition_again(self, db_session):
        _, invitation, _ = await create_invited_user(
            db_session, invitation={"status": InvitationStatus.ACCEPTED.value}
        )

        moved = await InvitationRepository(db_session).transition_status(
            invitation.id, ACCEPTABLE_STATUSES, InvitationStatus.ACCEPTED.value
        )

        assert moved is False

    async def test_concurrent_acceptances_with_same_username(self, db_session, session_scope):
        _, _, first_token = await create_invited_user(db_session)
        _, _, second_token = await create_invited_user(db_session)

        async def accept(token: str):
            async with session_scope() as session:
                return await store_for(session).accept(token, "jdoe", "argon2-hash")

        results = await asyncio.gather(
            accept(first_token), accept(second_token), return_exceptions=True
        )

        winners = [r for r in results if isinstance(r, User)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1 and isinstance(losers[0], Conflict)
        async with session_scope() as check:
            assert await count_rows(check, User, username="jdoe") == 1
            assert await count_rows(check, User, status=UserStatus.ACTIVE.value) == 1


class TestValidateToken:
    async def test_open_invitation(self, store, db_session):
        _, invitation, token = await create_invited_user(db_session)

        validated = await store.validate_token(token)

        assert validated.id == invitation.id

    async def test_unknown_token(self, store):
        with pytest.raises(NotFound):
            await store.validate_token("no-such-token")

    async def test_expired_token(self, store, db_session):
        _, invitation, token = await create_invited_user(
            db_session, invitation={"expires_at": utc_now() - timedelta(minutes=1)}
        )

        with pytest.raises(Expired):
            await store.validate_token(token)
        await db_session.refresh(invitation)
        assert invitation.status == InvitationStatus.SENT.value

    @pytest.mark.parametrize(
        ("status", "error"),
        [
            (InvitationStatus.ACCEPTED, AlreadyUsed),
            (InvitationStatus.CANCELLED, Invalid),
            (InvitationStatus.FAILED, Invalid),
        ],
    )
    async def test_closed_invitation(self, store, db_session, status, error):
        _, _, token = await create_invited_user(db_session, invitation={"status": status.value})

        with pytest.raises(error):
            await store.validate_token(token)


class TestCancel:
    async def test_cancels_open_invitation(self, store, db_session):
        _, invitation, token = await create_invited_user(db_session)

        cancelled = await store.cancel(invitation.id)

        assert cancelled.status == InvitationStatus.CANCELLED.value
        assert cancelled.cancelled_at is not None
        with pytest.raises(Invalid):
            await store.accept(token, "jdoe", "argon2-hash")

    async def test_accepted_invitation_cannot_be_cancelled(self, store, db_session):
        _, invitation, _ = await create_invited_user(
            db_session, invitation={"status": InvitationStatus.ACCEPTED.value}
        )

        with pytest.raises(Invalid):
            await store.cancel(invitation.id)

    async def test_expired_invitation(self, store, db_session):
        _, invitation, _ = await create_invited_user(
            db_session, invitation={"expires_at": utc_now() - timedelta(hours=1)}
        )

        with pytest.raises(Expired):
            await store.cancel(invitation.id)

    async def test_unknown_invitation(self, store):
        with pytest.raises(NotFound):
            await store.cancel(uuid4())


class TestReissueForResend:
    async def test_rotates_token(self, store, db_session):
        _, invitation, old_token = await create_invited_user(
            db_session, invitation={"status": InvitationStatus.FAILED.value}
        )
        expires_at = invitation.expires_at

        issued = await store.reissue_for_resend(invitation.id)

        assert issued.token != old_token
        assert issued.invitation.id == invitation.id
        assert issued.invitation.token_hash == hash_token(issued.token)
        assert issued.invitation.expires_at == expires_at
        with pytest.raises(NotFound):
            await store.accept(old_token, "jdoe", "argon2-hash")

    async def test_sent_invitation_cannot_be_resent(self, store, db_session):
        _, invitation, _ = await create_invited_user(db_session)

        with pytest.raises(Invalid):
            await store.reissue_for_resend(invitation.id)

    async def test_expired_invitation(self, store, db_session):
        _, invitation, _ = await create_invited_user(
            db_session,
            invitation={
                "status": InvitationStatus.PENDING.value,
                "expires_at": utc_now() - timedelta(minutes=5),
            },
        )

        with pytest.raises(Expired):
            await store.reissue_for_resend(invitation.id)


class TestSuspendUser:
    async def test_active_user_suspended(self, store, db_session):
        user = await create_active_user(db_session)

        assert await store.suspend_user(user.id) is True
        await db_session.refresh(user)
        assert user.status == UserStatus.SUSPENDED.value

    async def test_invited_user_not_suspended(self, store, db_session):
        user, _, _ = await create_invited_user(db_session)

        assert await store.suspend_user(user.id) is False
        await db_session.refresh(user)
        assert user.status == UserStatus.INVITED.value


class TestLinkContact:
    async def test_links_when_unset(self, store, db_session):
        user = await create_active_user(db_session)

        assert await store.link_contact(user, "ghl-1") is True
        await db_session.refresh(user)
        assert user.gohighlevel_contact_id == "ghl-1"

    async def test_never_overwrites(self, store, db_session):
        user = await create_active_user(db_session, gohighlevel_contact_id="ghl-1")

        assert await store.link_contact(user, "ghl-2") is False
        assert user.gohighlevel_contact_id == "ghl-1"

    async def test_contact_owned_by_another_user(self, store, db_session):
        await create_active_user(db_session, gohighlevel_contact_id="ghl-1")
        user = await create_active_user(db_session)

        with pytest.raises(Conflict):
            await store.link_contact(user, "ghl-1")
        await db_session.refresh(user)
        assert user.gohighlevel_contact_id is None

    async def test_contact_claimed_after_check(
        self, store, db_session, monkeypatch: pytest.MonkeyPatch
    ):
        await create_active_user(db_session, gohighlevel_contact_id="ghl-1")
        user, invitation, _ = await create_invited_user(db_session)
        monkeypatch.setattr(store.user_repo, "get_by_contact_id", AsyncMock(return_value=None))

        with pytest.raises(Conflict):
            await store.link_contact(user, "ghl-1")

        # Instances stay loaded after the rollback
        assert user.email
        assert user.gohighlevel_contact_id is None
        assert invitation.status == InvitationStatus.SENT.value


class TestDeleteUser:
    async def test_deletes_dependents(self, store, db_session):
        user, _, _ = await create_invited_user(db_session)
        cancelled, _ = UserInvitationFactory.with_token(
            user_id=user.id, email=user.email, status=InvitationStatus.CANCELLED.value
        )
        db_session.add(cancelled)
        db_session.add(AgentPage(user_id=user.id, slug="test-user", display_name="Test User"))
        await db_session.commit()

        deleted = await store.delete_user(user.id)

        assert deleted.id == user.id
        assert await count_rows(db_session, User, id=user.id) == 0
        assert await count_rows(db_session, UserInvitation, user_id=user.id) == 0
        assert await count_rows(db_session, AgentPage, user_id=user.id) == 0

    async def test_unknown_user(self, store):
        with pytest.raises(NotFound):
            await store.delete_user(uuid4())


class TestReads:
    async def test_effective_status_reports_expiry(self, store, db_session):
        _, invitation, _ = await create_invited_user(
            db_session, invitation={"expires_at": utc_now() - timedelta(seconds=1)}
        )

        loaded = await store.get_invitation(invitation.id)

        assert loaded.status == InvitationStatus.SENT.value
        assert loaded.effective_status() is InvitationStatus.EXPIRED

    async def test_list_invitations_filters_by_status(self, store, db_session):
        await create_invited_user(db_session)
        await create_invited_user(
            db_session, invitation={"status": InvitationStatus.FAILED.value}
        )

        failed, _, has_more = await store.list_invitations(status="failed")
        everything, _, _ = await store.list_invitations()

        assert [inv.status for inv in failed] == ["failed"]
        assert len(everything) == 2
        assert has_more is False

    async def test_list_invitations_pages(self, store, db_session):
        for i in range(3):
            await create_invited_user(
                db_session,
                invitation={"created_at": utc_now() - timedelta(minutes=i)},
            )

        first, cursor, has_more = await store.list_invitations(limit=2)
        second, _, more_after = await store.list_invitations(cursor=cursor, limit=2)

        assert len(first) == 2 and has_more and cursor
        assert len(second) == 1 and not more_after
        assert {inv.id for inv in first}.isdisjoint({inv.id for inv in second})
