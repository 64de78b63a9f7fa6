"""Notification dispatcher and transition recipient selection."""

from proposal_workflow.models.notification import NotificationChannel, NotificationPriority, NotificationStatus
from proposal_workflow.models.proposal import Proposal, ProposalStatus, User, UserRole
from proposal_workflow.models.workflow import RecipientPolicy
from proposal_workflow.services.notification import NotificationDispatcher

ACTOR = User(id="u-1", name="Dana", role=UserRole.THERAPIST)
OTHER = User(id="u-2", name="Sam", role=UserRole.COORDINATOR)


def _proposal():
    return Proposal(id="p-1", patient_id="patient-1", status=ProposalStatus.SUBMITTED)


# ═════════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═════════════════════════════════════════════════════════════════════════════


class TestDispatcher:

    def test_enqueue_defaults(self):
        n = NotificationDispatcher().enqueue(_proposal(), "proposal_submitted", ACTOR)
        assert n.status == NotificationStatus.PENDING
        assert n.channel == NotificationChannel.IN_APP
        assert n.priority == NotificationPriority.MEDIUM
        assert n.user_id == ACTOR.id
        assert n.id.startswith("notification-")
        assert n.created_at is not None
        assert n.message == "Proposal p-1 status has been updated"
        assert n.data["triggered_by"] == ACTOR.id

    def test_template_text_used_when_known(self):
        n = NotificationDispatcher().enqueue(
            _proposal(), "proposal_submitted", ACTOR,
            templates={"proposal_submitted": "New proposal submitted for review"},
        )
        assert n.message.startswith("New proposal submitted for review")

    def test_explicit_recipient_priority_channel(self):
        n = NotificationDispatcher().enqueue(
            _proposal(), "x", ACTOR, recipient=OTHER,
            priority=NotificationPriority.URGENT, channel=NotificationChannel.EMAIL,
        )
        assert n.user_id == OTHER.id
        assert n.priority == NotificationPriority.URGENT
        assert n.channel == NotificationChannel.EMAIL

    def test_configured_default_channel(self):
        n = NotificationDispatcher("PUSH").enqueue(_proposal(), "x", ACTOR)
        assert n.channel == NotificationChannel.PUSH

    def test_for_user_newest_first(self):
        d = NotificationDispatcher()
        first = d.enqueue(_proposal(), "a", ACTOR)
        second = d.enqueue(_proposal(), "b", ACTOR)
        d.enqueue(_proposal(), "c", OTHER)
        assert d.for_user(ACTOR.id) == [second, first]

    def test_mark_read(self):
        d = NotificationDispatcher()
        n = d.enqueue(_proposal(), "a", ACTOR)
        assert d.mark_read(n.id) is True
        assert n.status == NotificationStatus.READ
        assert n.read_at is not None
        assert d.for_user(ACTOR.id, unread_only=True) == []
        assert d.unread_count(ACTOR.id) == 0

    def test_mark_read_unknown(self):
        assert NotificationDispatcher().mark_read("notification-missing") is False


# ═════════════════════════════════════════════════════════════════════════════
# Recipient policy
# ═════════════════════════════════════════════════════════════════════════════


class TestRecipients:

    def test_actor_policy_notifies_actor(self, engine, dispatcher, make_proposal, therapist, coordinator):
        engine.apply_transition(make_proposal(), therapist, "draft-to-submitted")
        assert len(dispatcher.for_user(therapist.id)) == 1
        assert dispatcher.for_user(coordinator.id) == []

    def test_next_role_policy_notifies_next_actor(self, engine, store, dispatcher, make_proposal,
                                                  therapist, coordinator):
        wf = store.get("default-proposal-workflow")
        wf.notifications.recipient_policy = RecipientPolicy.NEXT_ROLE
        store.save(wf)
        engine.apply_transition(make_proposal(), therapist, "draft-to-submitted")

        assert dispatcher.for_user(therapist.id) == []
        [n] = dispatcher.for_user(coordinator.id)
        assert n.template == "proposal_submitted"

    def test_next_role_falls_back_to_actor_at_terminal(self, engine, store, dispatcher, make_proposal,
                                                       therapist):
        wf = store.get("default-proposal-workflow")
        wf.notifications.recipient_policy = RecipientPolicy.NEXT_ROLE
        store.save(wf)
        engine.apply_transition(make_proposal(ProposalStatus.APPROVED), therapist, "approved-to-implementation")
        assert len(dispatcher.for_user(therapist.id)) == 1

    def test_disabled_notifications(self, engine, store, dispatcher, make_proposal, therapist):
        wf = store.get("default-proposal-workflow")
        wf.notifications.enabled = False
        store.save(wf)
        assert engine.apply_transition(make_proposal(), therapist, "draft-to-submitted").success
        assert dispatcher.all() == []
