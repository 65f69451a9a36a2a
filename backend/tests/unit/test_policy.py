"""Tests for the ticket capability matrix and ticket visibility."""


class TestCapabilities:
    """Capabilities per role on an open ticket raised by a client user."""

    def test_creator(self, db_session, customer, sample_ticket):
        from helpdesk.services.policy import resolve_capabilities

        caps = resolve_capabilities(db_session, customer, sample_ticket)
        assert caps.can_view and caps.can_message
        assert caps.can_manage_participants and caps.can_add_secure_keys
        assert caps.can_delete_secure_keys
        assert not caps.can_post_internal
        assert not caps.can_view_internal
        assert not caps.can_change_status
        assert not caps.can_self_assign

    def test_same_tenant_user_cannot_view(self, db_session, coworker, sample_ticket):
        """Sharing a tenant is not enough for a plain user."""
        from helpdesk.services.policy import resolve_capabilities

        caps = resolve_capabilities(db_session, coworker, sample_ticket)
        assert not caps.can_view
        assert not caps.can_message

    def test_participant(self, db_session, coworker, sample_ticket):
        from helpdesk.models import TicketParticipant
        from helpdesk.services.policy import resolve_capabilities

        db_session.add(TicketParticipant(ticket_id=sample_ticket.id, user_id=coworker.id))
        db_session.commit()

        caps = resolve_capabilities(db_session, coworker, sample_ticket)
        assert caps.can_view and caps.can_message and caps.can_add_participants
        assert caps.can_view_secure_keys
        assert not caps.can_manage_participants
        assert not caps.can_delete_secure_keys

    def test_org_admin_same_tenant(self, db_session, org_admin, sample_ticket):
        from helpdesk.services.policy import resolve_capabilities

        caps = resolve_capabilities(db_session, org_admin, sample_ticket)
        assert caps.can_view and caps.can_message and caps.can_manage_participants
        assert not caps.can_view_internal
        assert not caps.can_change_status

    def test_other_tenant_has_nothing(self, db_session, outsider, sample_ticket):
        from helpdesk.services.policy import TicketCapabilities, resolve_capabilities

        assert resolve_capabilities(db_session, outsider, sample_ticket) == TicketCapabilities()

    def test_unassigned_agent_can_view_but_not_act(self, db_session, agent, sample_ticket):
        """Agents list every ticket but only act on their own assignments."""
        from helpdesk.services.policy import resolve_capabilities

        caps = resolve_capabilities(db_session, agent, sample_ticket)
        assert caps.can_view and caps.can_view_internal and caps.can_self_assign
        assert not caps.can_message
        assert not caps.can_change_status
        assert not caps.acts_as_internal

    def test_assigned_agent(self, db_session, agent, sample_ticket):
        from helpdesk.services.policy import resolve_capabilities

        sample_ticket.assigned_to = agent.id
        sample_ticket.status = "in_progress"
        db_session.commit()

        caps = resolve_capabilities(db_session, agent, sample_ticket)
        assert caps.acts_as_internal and caps.can_message and caps.can_post_internal
        assert caps.can_change_status
        assert not caps.can_self_assign
        assert not caps.can_reassign

    def test_manager(self, db_session, agent_admin, sample_ticket):
        from helpdesk.services.policy import resolve_capabilities

        caps = resolve_capabilities(db_session, agent_admin, sample_ticket)
        assert caps.acts_as_internal and caps.can_reassign and caps.can_change_status

    def test_closed_ticket(self, db_session, customer, agent_admin, super_admin, sample_ticket):
        """Closed tickets are read-only for clients; only the super admin changes status."""
        from helpdesk.services.policy import resolve_capabilities

        sample_ticket.status = "closed"
        db_session.commit()

        client_caps = resolve_capabilities(db_session, customer, sample_ticket)
        assert client_caps.can_view and client_caps.can_view_secure_keys
        assert not client_caps.can_message
        assert not client_caps.can_add_secure_keys
        assert not client_caps.can_manage_participants

        manager_caps = resolve_capabilities(db_session, agent_admin, sample_ticket)
        assert manager_caps.can_message and not manager_caps.can_change_status
        assert not manager_caps.can_reassign

        assert resolve_capabilities(db_session, super_admin, sample_ticket).can_change_status


class TestVisibleTickets:
    """Which tickets appear in a user's listing."""

    def test_scopes(self, db_session, customer, coworker, org_admin, outsider, agent, sample_ticket):
        from helpdesk.models import TicketParticipant
        from helpdesk.services.policy import visible_tickets
        from helpdesk.services.tickets import create_ticket

        foreign = create_ticket(db_session, outsider, title="Globex issue")
        db_session.commit()

        assert {t.id for t in visible_tickets(db_session, agent)} == {sample_ticket.id, foreign.id}
        assert {t.id for t in visible_tickets(db_session, org_admin)} == {sample_ticket.id}
        assert {t.id for t in visible_tickets(db_session, customer)} == {sample_ticket.id}
        assert visible_tickets(db_session, coworker).count() == 0

        db_session.add(TicketParticipant(ticket_id=sample_ticket.id, user_id=coworker.id))
        db_session.commit()
        assert {t.id for t in visible_tickets(db_session, coworker)} == {sample_ticket.id}


class TestRoleGroups:
    """Role-group checks live in the policy module."""

    def test_internal_and_manager_groups(self, super_admin, agent_admin, agent, org_admin, customer):
        from helpdesk.models import User
        from helpdesk.services.policy import is_internal, is_manager

        assert [is_internal(u) for u in (super_admin, agent_admin, agent, org_admin, customer)] == [
            True, True, True, False, False,
        ]
        assert [is_manager(u) for u in (super_admin, agent_admin, agent)] == [True, True, False]
        assert not hasattr(User, "is_internal")
        assert not hasattr(User, "is_manager")
