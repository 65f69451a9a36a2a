"""Tests for the ticket lifecycle engine."""
from datetime import datetime, timedelta

import pytest


def _messages(db_session, ticket):
    from helpdesk.models import Message

    return (
        db_session.query(Message)
        .filter(Message.ticket_id == ticket.id)
        .order_by(Message.id)
        .all()
    )


class TestCreateTicket:
    """Ticket creation, on-behalf filing and auto-assignment."""

    def test_create_own_ticket(self, db_session, customer, sample_tenant):
        from helpdesk.services.tickets import create_ticket

        ticket = create_ticket(db_session, customer, title="  VPN down ", priority="high")
        db_session.commit()
        assert ticket.title == "VPN down"
        assert ticket.status == "open"
        assert ticket.tenant_id == sample_tenant.id
        assert ticket.created_by == customer.id
        assert ticket.created_by_agent is None
        assert ticket.assigned_to is None

    def test_title_and_priority_validated(self, db_session, customer):
        from helpdesk.errors import ValidationError
        from helpdesk.services.tickets import create_ticket

        with pytest.raises(ValidationError):
            create_ticket(db_session, customer, title="   ")
        with pytest.raises(ValidationError):
            create_ticket(db_session, customer, title="x", priority="critical")

    def test_agent_files_on_behalf(self, db_session, agent, customer, sample_tenant):
        """The beneficiary owns the ticket, the agent is recorded as its author."""
        from helpdesk.services.tickets import create_ticket

        ticket = create_ticket(db_session, agent, title="Phoned in", on_behalf_of=customer.id)
        db_session.commit()
        assert ticket.created_by == customer.id
        assert ticket.created_by_agent == agent.id
        assert ticket.tenant_id == sample_tenant.id

    def test_agent_on_behalf_with_wrong_tenant(self, db_session, agent, customer, other_tenant):
        from helpdesk.errors import ValidationError
        from helpdesk.services.tickets import create_ticket

        with pytest.raises(ValidationError):
            create_ticket(db_session, agent, title="x", on_behalf_of=customer.id, tenant_id=other_tenant.id)

    def test_plain_user_cannot_file_on_behalf(self, db_session, customer, coworker):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import create_ticket

        with pytest.raises(AuthorizationError):
            create_ticket(db_session, customer, title="x", on_behalf_of=coworker.id)

    def test_org_admin_limited_to_own_tenant(self, db_session, org_admin, customer, outsider):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import create_ticket

        ticket = create_ticket(db_session, org_admin, title="For Alice", on_behalf_of=customer.id)
        assert ticket.created_by == customer.id
        with pytest.raises(AuthorizationError):
            create_ticket(db_session, org_admin, title="For Carol", on_behalf_of=outsider.id)

    def test_on_behalf_of_inactive_user(self, db_session, agent, make_user, sample_tenant):
        from helpdesk.errors import NotFoundError
        from helpdesk.services.tickets import create_ticket

        ghost = make_user("ghost@acme.com", tenant=sample_tenant, is_active=False)
        with pytest.raises(NotFoundError):
            create_ticket(db_session, agent, title="x", on_behalf_of=ghost.id)

    def test_tenantless_creator_rejected(self, db_session, agent_admin):
        from helpdesk.errors import ValidationError
        from helpdesk.services.tickets import create_ticket

        with pytest.raises(ValidationError):
            create_ticket(db_session, agent_admin, title="x")

    def test_auto_assign_balances_load(self, db_session, customer, agent, other_agent):
        from helpdesk.services.tickets import create_ticket

        first = create_ticket(db_session, customer, title="one", auto_assign=True)
        second = create_ticket(db_session, customer, title="two", auto_assign=True)
        db_session.commit()

        assert first.assigned_to == agent.id
        assert second.assigned_to == other_agent.id
        assert first.status == "in_progress"
        notes = _messages(db_session, first)
        assert [m.content for m in notes] == ["Ticket automatically assigned to Agent Smith."]
        assert notes[0].is_internal is False

    def test_auto_assign_without_agents(self, db_session, customer, agent_admin):
        from helpdesk.services.tickets import create_ticket

        ticket = create_ticket(db_session, customer, title="lonely", auto_assign=True)
        db_session.commit()
        assert ticket.assigned_to is None
        assert ticket.status == "open"

    def test_pick_available_agent_skips_inactive(self, db_session, agent, other_agent):
        from helpdesk.services.tickets import pick_available_agent

        agent.is_active = False
        db_session.commit()
        assert pick_available_agent(db_session).id == other_agent.id


class TestListTickets:
    """Listing order and the closed split."""

    def test_active_ordering(self, db_session, customer):
        from helpdesk.services.tickets import create_ticket, list_tickets

        low = create_ticket(db_session, customer, title="low", priority="low")
        urgent = create_ticket(db_session, customer, title="urgent", priority="urgent")
        medium = create_ticket(db_session, customer, title="medium")
        urgent_newer = create_ticket(db_session, customer, title="urgent 2", priority="urgent")
        db_session.commit()

        ids = [t.id for t in list_tickets(db_session, customer)]
        assert ids == [urgent_newer.id, urgent.id, medium.id, low.id]

    def test_closed_listed_separately(self, db_session, customer, sample_ticket):
        from helpdesk.services.tickets import create_ticket, list_tickets

        done = create_ticket(db_session, customer, title="done")
        done.status = "closed"
        db_session.commit()

        assert [t.id for t in list_tickets(db_session, customer)] == [sample_ticket.id]
        assert [t.id for t in list_tickets(db_session, customer, closed=True)] == [done.id]


class TestAssignment:
    """Self-assignment and manager reassignment."""

    def test_self_assign(self, db_session, agent, sample_ticket):
        from helpdesk.services.tickets import self_assign

        ticket = self_assign(db_session, agent, sample_ticket.id)
        db_session.commit()
        assert ticket.assigned_to == agent.id
        assert ticket.status == "in_progress"
        assert "Agent Smith took this ticket" in _messages(db_session, ticket)[-1].content

    def test_failed_self_assign_leaves_ticket_unchanged(self, db_session, agent, other_agent, sample_ticket):
        from helpdesk.errors import StateConflictError
        from helpdesk.services.tickets import self_assign

        self_assign(db_session, agent, sample_ticket.id)
        db_session.commit()
        before = len(_messages(db_session, sample_ticket))

        with pytest.raises(StateConflictError):
            self_assign(db_session, other_agent, sample_ticket.id)
        db_session.rollback()

        db_session.refresh(sample_ticket)
        assert sample_ticket.assigned_to == agent.id
        assert len(_messages(db_session, sample_ticket)) == before

    def test_client_cannot_self_assign(self, db_session, customer, sample_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import self_assign

        with pytest.raises(AuthorizationError):
            self_assign(db_session, customer, sample_ticket.id)

    def test_manager_assigns_then_reassigns(self, db_session, agent_admin, agent, other_agent, sample_ticket):
        from helpdesk.services.tickets import reassign

        reassign(db_session, agent_admin, sample_ticket.id, agent.id)
        reassign(db_session, agent_admin, sample_ticket.id, other_agent.id)
        db_session.commit()

        assert sample_ticket.assigned_to == other_agent.id
        assert sample_ticket.status == "in_progress"
        contents = [m.content for m in _messages(db_session, sample_ticket)]
        assert contents == [
            "Lead assigned this ticket to Agent Smith.",
            "Lead reassigned this ticket to Agent Jones.",
        ]

    def test_reassign_to_same_agent_is_noop(self, db_session, agent_admin, agent, sample_ticket):
        from helpdesk.services.tickets import reassign

        reassign(db_session, agent_admin, sample_ticket.id, agent.id)
        reassign(db_session, agent_admin, sample_ticket.id, agent.id)
        db_session.commit()
        assert len(_messages(db_session, sample_ticket)) == 1

    def test_agent_cannot_reassign(self, db_session, agent, other_agent, sample_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import reassign

        with pytest.raises(AuthorizationError):
            reassign(db_session, agent, sample_ticket.id, other_agent.id)

    def test_reassign_to_client_rejected(self, db_session, agent_admin, coworker, sample_ticket):
        from helpdesk.errors import NotFoundError
        from helpdesk.services.tickets import reassign

        with pytest.raises(NotFoundError):
            reassign(db_session, agent_admin, sample_ticket.id, coworker.id)

    def test_closed_ticket_cannot_be_reassigned(self, db_session, agent_admin, agent, sample_ticket):
        from helpdesk.errors import StateConflictError
        from helpdesk.services.tickets import reassign

        sample_ticket.status = "closed"
        db_session.commit()
        with pytest.raises(StateConflictError):
            reassign(db_session, agent_admin, sample_ticket.id, agent.id)


class TestChangeStatus:
    """Explicit status transitions."""

    @pytest.fixture
    def assigned_ticket(self, db_session, agent, sample_ticket):
        sample_ticket.assigned_to = agent.id
        sample_ticket.status = "in_progress"
        db_session.commit()
        return sample_ticket

    def test_status_change_posts_public_message(self, db_session, agent, assigned_ticket):
        from helpdesk.services.tickets import change_status

        change_status(db_session, agent, assigned_ticket.id, "pending", "Waiting on the vendor")
        db_session.commit()
        assert assigned_ticket.status == "pending"
        last = _messages(db_session, assigned_ticket)[-1]
        assert last.content == 'Status changed to "Pending"\n\nWaiting on the vendor'
        assert last.is_internal is False

    def test_message_required(self, db_session, agent, assigned_ticket):
        from helpdesk.errors import ValidationError
        from helpdesk.services.tickets import change_status

        with pytest.raises(ValidationError):
            change_status(db_session, agent, assigned_ticket.id, "resolved", "   ")

    def test_unknown_status(self, db_session, agent, assigned_ticket):
        from helpdesk.errors import ValidationError
        from helpdesk.services.tickets import change_status

        with pytest.raises(ValidationError):
            change_status(db_session, agent, assigned_ticket.id, "archived", "why")

    def test_cannot_reopen_active_ticket(self, db_session, agent, assigned_ticket):
        from helpdesk.errors import StateConflictError
        from helpdesk.services.tickets import change_status

        with pytest.raises(StateConflictError):
            change_status(db_session, agent, assigned_ticket.id, "open", "back to queue")

    def test_creator_cannot_change_status(self, db_session, customer, assigned_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import change_status

        with pytest.raises(AuthorizationError):
            change_status(db_session, customer, assigned_ticket.id, "resolved", "fixed it myself")

    def test_unassigned_agent_cannot_change_status(self, db_session, other_agent, assigned_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import change_status

        with pytest.raises(AuthorizationError):
            change_status(db_session, other_agent, assigned_ticket.id, "resolved", "done")

    def test_only_super_admin_touches_closed(self, db_session, agent, agent_admin, super_admin, assigned_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import change_status

        change_status(db_session, agent, assigned_ticket.id, "closed", "done")
        db_session.commit()

        with pytest.raises(AuthorizationError):
            change_status(db_session, agent_admin, assigned_ticket.id, "in_progress", "again")

        change_status(db_session, super_admin, assigned_ticket.id, "open", "Reopened on request")
        db_session.commit()
        assert assigned_ticket.status == "open"


class TestMessages:
    """Posting messages, internal notes and participant changes."""

    def test_client_message_is_public(self, db_session, customer, sample_ticket):
        from helpdesk.services.tickets import post_message

        message = post_message(db_session, customer, sample_ticket.id, "Any news?", is_internal=True)
        db_session.commit()
        assert message.is_internal is False

    def test_unassigned_agent_cannot_post(self, db_session, agent, sample_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import post_message

        with pytest.raises(AuthorizationError):
            post_message(db_session, agent, sample_ticket.id, "hello")

    def test_empty_message_rejected(self, db_session, customer, sample_ticket):
        from helpdesk.errors import ValidationError
        from helpdesk.services.tickets import post_message

        with pytest.raises(ValidationError):
            post_message(db_session, customer, sample_ticket.id, "  ")

    def test_public_reply_reopens_resolved_ticket(self, db_session, customer, sample_ticket):
        """A public message on a resolved ticket adds exactly one internal note."""
        from helpdesk.services.tickets import post_message

        sample_ticket.status = "resolved"
        db_session.commit()

        post_message(db_session, customer, sample_ticket.id, "Still broken")
        db_session.commit()

        assert sample_ticket.status == "in_progress"
        messages = _messages(db_session, sample_ticket)
        assert [m.content for m in messages][0] == "Still broken"
        notes = [m for m in messages if m.is_internal]
        assert len(notes) == 1
        assert "In progress" in notes[0].content

    def test_internal_note_keeps_resolved(self, db_session, agent_admin, sample_ticket):
        from helpdesk.services.tickets import post_message

        sample_ticket.status = "resolved"
        db_session.commit()

        message = post_message(db_session, agent_admin, sample_ticket.id, "Checked logs", is_internal=True)
        db_session.commit()
        assert message.is_internal is True
        assert sample_ticket.status == "resolved"
        assert len(_messages(db_session, sample_ticket)) == 1

    def test_closed_ticket_forces_internal(self, db_session, customer, super_admin, sample_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import post_message

        sample_ticket.status = "closed"
        db_session.commit()

        with pytest.raises(AuthorizationError):
            post_message(db_session, customer, sample_ticket.id, "hello?")

        message = post_message(db_session, super_admin, sample_ticket.id, "Post-mortem note", is_internal=False)
        db_session.commit()
        assert message.is_internal is True
        assert sample_ticket.status == "closed"

    def test_participant_diff_is_audited(self, db_session, customer, coworker, outsider, sample_ticket):
        from helpdesk.services.tickets import post_message

        post_message(
            db_session, customer, sample_ticket.id, "Adding Bob",
            add_participants=[coworker.id, outsider.id],
        )
        db_session.commit()
        assert [p.user_id for p in sample_ticket.participants] == [coworker.id]
        audit = [m for m in _messages(db_session, sample_ticket) if m.is_internal]
        assert audit[-1].content == "Participant changes:\n+ Bob was added to the ticket"

        post_message(db_session, customer, sample_ticket.id, "Removing Bob", keep_participants=[])
        db_session.commit()
        db_session.refresh(sample_ticket)
        assert sample_ticket.participants == []
        audit = [m for m in _messages(db_session, sample_ticket) if m.is_internal]
        assert audit[-1].content == "Participant changes:\n- Bob was removed from the ticket"

    def test_participant_cannot_manage_participants(self, db_session, customer, coworker, make_user,
                                                     sample_tenant, sample_ticket):
        from helpdesk.services.tickets import add_participant, post_message

        add_participant(db_session, customer, sample_ticket.id, coworker.id)
        db_session.commit()
        dave = make_user("dave@acme.com", tenant=sample_tenant, name="Dave")

        post_message(db_session, coworker, sample_ticket.id, "me too", keep_participants=[], add_participants=[dave.id])
        db_session.commit()
        db_session.refresh(sample_ticket)
        assert [p.user_id for p in sample_ticket.participants] == [coworker.id]

    def test_add_participant(self, db_session, customer, coworker, sample_ticket):
        from helpdesk.errors import StateConflictError
        from helpdesk.services.tickets import add_participant

        add_participant(db_session, customer, sample_ticket.id, coworker.id)
        db_session.commit()
        assert _messages(db_session, sample_ticket)[-1].content == "Alice added Bob to the ticket."
        with pytest.raises(StateConflictError):
            add_participant(db_session, customer, sample_ticket.id, coworker.id)

    def test_add_ineligible_participant(self, db_session, customer, outsider, sample_ticket):
        from helpdesk.errors import ValidationError
        from helpdesk.services.tickets import add_participant

        with pytest.raises(ValidationError):
            add_participant(db_session, customer, sample_ticket.id, outsider.id)
        with pytest.raises(ValidationError):
            add_participant(db_session, customer, sample_ticket.id, customer.id)


class TestTicketDetail:
    """Detail view filtering."""

    def test_internal_messages_hidden_from_clients(self, db_session, customer, agent_admin, sample_ticket):
        from helpdesk.services.tickets import post_message, ticket_detail

        post_message(db_session, agent_admin, sample_ticket.id, "Public reply")
        post_message(db_session, agent_admin, sample_ticket.id, "Team only", is_internal=True)
        db_session.commit()

        client_view = ticket_detail(db_session, customer, sample_ticket.id)
        assert [m.content for m in client_view.messages] == ["Public reply"]
        team_view = ticket_detail(db_session, agent_admin, sample_ticket.id)
        assert [m.content for m in team_view.messages] == ["Public reply", "Team only"]

    def test_unrelated_user_denied(self, db_session, coworker, sample_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import ticket_detail

        with pytest.raises(AuthorizationError):
            ticket_detail(db_session, coworker, sample_ticket.id)

    def test_missing_ticket(self, db_session, customer):
        from helpdesk.errors import NotFoundError
        from helpdesk.services.tickets import ticket_detail

        with pytest.raises(NotFoundError):
            ticket_detail(db_session, customer, 999)


class TestSecureKeys:
    """Secure keys attached to messages or added on their own."""

    def test_confirmation_required(self, db_session, customer, sample_ticket):
        from helpdesk.errors import ValidationError
        from helpdesk.services.tickets import post_message

        with pytest.raises(ValidationError):
            post_message(db_session, customer, sample_ticket.id, "password below", secure_key_value="hunter2")

    def test_key_attached_to_message(self, db_session, customer, sample_ticket):
        from helpdesk.services.tickets import post_message, reveal_secure_key, ticket_detail

        message = post_message(
            db_session, customer, sample_ticket.id, "password below",
            secure_key_value="hunter2", secure_key_confirmed=True,
        )
        db_session.commit()

        detail = ticket_detail(db_session, customer, sample_ticket.id)
        key_ids = detail.secure_keys[message.id]
        assert len(key_ids) == 1
        assert reveal_secure_key(db_session, customer, sample_ticket.id, key_ids[0]) == "hunter2"

    def test_key_on_internal_note_hidden_from_client(self, db_session, customer, agent_admin, sample_ticket):
        """A key attached to an internal note cannot be revealed or deleted by the creator."""
        from helpdesk.errors import NotFoundError
        from helpdesk.services.tickets import post_message, remove_secure_key, reveal_secure_key, ticket_detail

        message = post_message(
            db_session, agent_admin, sample_ticket.id, "Root password for the DB",
            is_internal=True, secure_key_value="db-root-pw", secure_key_confirmed=True,
        )
        db_session.commit()
        key_id = message.secure_keys[0].id

        assert ticket_detail(db_session, customer, sample_ticket.id).secure_keys == {}
        with pytest.raises(NotFoundError):
            reveal_secure_key(db_session, customer, sample_ticket.id, key_id)
        with pytest.raises(NotFoundError):
            remove_secure_key(db_session, customer, sample_ticket.id, key_id)
        assert reveal_secure_key(db_session, agent_admin, sample_ticket.id, key_id) == "db-root-pw"

    def test_value_stored_verbatim_on_both_paths(self, db_session, customer, sample_ticket):
        from helpdesk.services.tickets import add_secure_key, post_message, reveal_secure_key

        message = post_message(
            db_session, customer, sample_ticket.id, "padded secret",
            secure_key_value="  pa55 ", secure_key_confirmed=True,
        )
        standalone = add_secure_key(db_session, customer, sample_ticket.id, "  pa55 ")
        db_session.commit()

        attached_id = message.secure_keys[0].id
        assert reveal_secure_key(db_session, customer, sample_ticket.id, attached_id) == "  pa55 "
        assert reveal_secure_key(db_session, customer, sample_ticket.id, standalone.id) == "  pa55 "

    def test_outsider_cannot_reveal(self, db_session, customer, outsider, sample_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import add_secure_key, reveal_secure_key

        key = add_secure_key(db_session, customer, sample_ticket.id, "s3cret")
        db_session.commit()
        with pytest.raises(AuthorizationError):
            reveal_secure_key(db_session, outsider, sample_ticket.id, key.id)

    def test_unassigned_agent_cannot_reveal(self, db_session, customer, agent, sample_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import add_secure_key, reveal_secure_key

        key = add_secure_key(db_session, customer, sample_ticket.id, "s3cret")
        db_session.commit()
        with pytest.raises(AuthorizationError):
            reveal_secure_key(db_session, agent, sample_ticket.id, key.id)

    def test_key_of_other_ticket_not_found(self, db_session, customer, sample_ticket):
        from helpdesk.errors import NotFoundError
        from helpdesk.services.tickets import add_secure_key, create_ticket, reveal_secure_key

        other = create_ticket(db_session, customer, title="other")
        key = add_secure_key(db_session, customer, other.id, "s3cret")
        db_session.commit()
        with pytest.raises(NotFoundError):
            reveal_secure_key(db_session, customer, sample_ticket.id, key.id)

    def test_participant_cannot_delete(self, db_session, customer, coworker, sample_ticket):
        from helpdesk.errors import AuthorizationError
        from helpdesk.services.tickets import add_participant, add_secure_key, remove_secure_key

        add_participant(db_session, customer, sample_ticket.id, coworker.id)
        key = add_secure_key(db_session, customer, sample_ticket.id, "s3cret")
        db_session.commit()

        with pytest.raises(AuthorizationError):
            remove_secure_key(db_session, coworker, sample_ticket.id, key.id)
        remove_secure_key(db_session, customer, sample_ticket.id, key.id)
        db_session.commit()
        assert sample_ticket.secure_keys == []


class TestUnitOfWork:
    """Mutations and their audit messages commit or roll back together."""

    def test_failure_rolls_back_everything(self, db_session, agent_admin, agent, sample_ticket):
        from helpdesk.database import unit_of_work
        from helpdesk.errors import ValidationError
        from helpdesk.services.tickets import change_status, reassign

        with pytest.raises(ValidationError):
            with unit_of_work(db_session):
                reassign(db_session, agent_admin, sample_ticket.id, agent.id)
                change_status(db_session, agent_admin, sample_ticket.id, "resolved", "")

        db_session.refresh(sample_ticket)
        assert sample_ticket.assigned_to is None
        assert sample_ticket.status == "open"
        assert _messages(db_session, sample_ticket) == []


class TestAutoClose:
    """Closing stale pending tickets."""

    def test_closes_only_stale_pending(self, db_session, super_admin, customer):
        from helpdesk.services.tickets import auto_close_pending_tickets, create_ticket

        now = datetime(2026, 3, 10, 12, 0)
        stale = create_ticket(db_session, customer, title="stale")
        fresh = create_ticket(db_session, customer, title="fresh")
        active = create_ticket(db_session, customer, title="active")
        stale.status = fresh.status = "pending"
        stale.updated_at = now - timedelta(days=4)
        fresh.updated_at = now - timedelta(days=1)
        active.updated_at = now - timedelta(days=10)
        db_session.commit()

        assert auto_close_pending_tickets(db_session, days=3, now=now) == 1
        db_session.commit()

        assert stale.status == "closed"
        assert stale.updated_at == now
        assert fresh.status == "pending"
        assert active.status == "open"
        note = _messages(db_session, stale)[-1]
        assert note.user_id == super_admin.id
        assert note.is_internal is False

    def test_no_super_admin(self, db_session, customer):
        from helpdesk.services.tickets import auto_close_pending_tickets, create_ticket

        ticket = create_ticket(db_session, customer, title="stale")
        ticket.status = "pending"
        ticket.updated_at = datetime.utcnow() - timedelta(days=30)
        db_session.commit()

        assert auto_close_pending_tickets(db_session, days=3) == 0
        assert ticket.status == "pending"
