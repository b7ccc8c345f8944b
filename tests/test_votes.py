import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from bson.objectid import ObjectId

from staffvote.exceptions import ConflictError, NotFoundError, StorageError, ValidationError
from staffvote.services import CampaignService, VoteService

REASON = "Great work!"


@pytest.fixture
def roster(add_staff):
    return {
        "alice": add_staff("EMP001", "Alice", "Server", "Front of House"),
        "bob": add_staff("EMP002", "Bob", "Chef", "Kitchen"),
        "cara": add_staff("EMP003", "Cara", "Bartender", "Bar"),
    }


@pytest.fixture
def running(open_campaign, clock):
    campaign = open_campaign()
    clock.advance(hours=2)
    return campaign


def test_cast_vote_then_duplicate_conflicts(vote_service, roster, running):
    vote = vote_service.cast_vote(running.id, "EMP001", "EMP002", "  Great work!  ")

    assert vote.id
    assert vote.campaign_id == running.id
    assert vote.reason == "Great work!"
    assert vote.created_at is not None

    with pytest.raises(ConflictError, match="already voted"):
        vote_service.cast_vote(running.id, "EMP001", "EMP002", REASON)


def test_short_reason_rejected_before_write(vote_service, stores, roster, running):
    with pytest.raises(ValidationError, match="at least 10 characters"):
        vote_service.cast_vote(running.id, "EMP001", "EMP002", "Good")
    with pytest.raises(ValidationError):
        vote_service.cast_vote(running.id, "EMP001", "EMP002", "    short     ")

    assert stores.votes.stats(running.id).total_votes == 0


@pytest.mark.parametrize("campaign_id", ["1", "nope", "65f000000000000000000000"])
def test_self_vote_always_rejected(vote_service, campaign_id):
    with pytest.raises(ValidationError, match="cannot vote for yourself"):
        vote_service.cast_vote(campaign_id, "EMP001", "EMP001", "I am simply the best")


def test_self_vote_rejected_in_open_campaign(vote_service, roster, running):
    with pytest.raises(ValidationError, match="cannot vote for yourself"):
        vote_service.cast_vote(running.id, "EMP001", "EMP001", "I am simply the best")


def test_campaign_must_be_votable(vote_service, campaign_service, roster, open_campaign, clock):
    not_started = open_campaign()
    with pytest.raises(ValidationError, match="not active or not found"):
        vote_service.cast_vote(not_started.id, "EMP001", "EMP002", REASON)

    unpublished = open_campaign(publish=False)
    clock.advance(hours=2)
    with pytest.raises(ValidationError, match="not active or not found"):
        vote_service.cast_vote(unpublished.id, "EMP001", "EMP002", REASON)

    clock.advance(days=8)
    with pytest.raises(ValidationError, match="not active or not found"):
        vote_service.cast_vote(not_started.id, "EMP001", "EMP002", REASON)

    with pytest.raises(ValidationError, match="not active or not found"):
        vote_service.cast_vote("999999", "EMP001", "EMP002", REASON)


def test_deactivated_campaign_refuses_votes(vote_service, campaign_service, roster, running):
    campaign_service.update(
        running.id, running.title, None, running.start_date, running.end_date, is_active=False
    )
    with pytest.raises(ValidationError, match="not active or not found"):
        vote_service.cast_vote(running.id, "EMP001", "EMP002", REASON)


def test_candidate_must_be_active(vote_service, add_staff, roster, running):
    add_staff("EMP009", "Gone", active=False)

    with pytest.raises(ValidationError, match="Candidate not found or inactive"):
        vote_service.cast_vote(running.id, "EMP001", "EMP009", REASON)
    with pytest.raises(ValidationError, match="Candidate not found or inactive"):
        vote_service.cast_vote(running.id, "EMP001", "EMP404", REASON)


def test_store_unique_constraint_is_authoritative(stores, roster, running):
    stores.votes.create(running.id, "EMP001", "EMP002", REASON)

    # Straight to the store, skipping the service's friendly pre-check
    with pytest.raises(ConflictError):
        stores.votes.create(running.id, "EMP001", "EMP003", REASON)

    assert stores.votes.stats(running.id).total_votes == 1


def test_store_rejects_vote_for_deleted_campaign(stores, roster, campaign_service, open_campaign):
    campaign = open_campaign()
    campaign_service.delete(campaign.id)

    with pytest.raises(NotFoundError):
        stores.votes.create(campaign.id, "EMP001", "EMP002", REASON)
    assert stores.votes.stats(campaign.id).total_votes == 0


def test_deactivated_voter_cannot_vote(vote_service, stores, roster, running):
    alice = roster["alice"]
    stores.staff.update(alice.id, alice.name, alice.position, alice.department, None, None, False)

    with pytest.raises(ValidationError, match="Voter not found or inactive"):
        vote_service.cast_vote(running.id, "EMP001", "EMP002", REASON)
    assert stores.votes.stats(running.id).total_votes == 0


def test_deactivated_voter_cannot_amend(vote_service, stores, roster, running):
    vote = vote_service.cast_vote(running.id, "EMP001", "EMP002", REASON)
    alice = roster["alice"]
    stores.staff.update(alice.id, alice.name, alice.position, alice.department, None, None, False)

    with pytest.raises(ValidationError, match="Voter not found or inactive"):
        vote_service.amend_vote(vote.id, "EMP001", "EMP003", "Changed my mind about it")


def test_deleted_voter_cannot_vote(vote_service, staff_service, stores, add_staff, roster, running):
    leaver = add_staff("EMP008", "Leaver")
    staff_service.delete(leaver.id)

    with pytest.raises(ValidationError, match="Voter not found or inactive"):
        vote_service.cast_vote(running.id, "EMP008", "EMP002", REASON)
    assert stores.votes.stats(running.id).total_votes == 0


def test_sql_unknown_voter_is_a_storage_error(sql_stores, clock):
    sql_stores.staff.create("EMP002", "x", "Bob", "Chef", "Kitchen")
    campaign = sql_stores.campaigns.create("Ghosts", None, clock(), clock() + timedelta(days=1))

    # The voter foreign key fails; that is not a duplicate vote
    with pytest.raises(StorageError):
        sql_stores.votes.create(campaign.id, "GHOST", "EMP002", REASON)
    assert sql_stores.votes.stats(campaign.id).total_votes == 0


def test_sql_amend_to_unknown_candidate_is_a_storage_error(sql_stores, clock):
    for staff_id, name in [("EMP001", "Alice"), ("EMP002", "Bob")]:
        sql_stores.staff.create(staff_id, "x", name, "Server", "Front of House")
    campaign = sql_stores.campaigns.create("Amend", None, clock(), clock() + timedelta(days=1))
    vote = sql_stores.votes.create(campaign.id, "EMP001", "EMP002", REASON)

    with pytest.raises(StorageError):
        sql_stores.votes.amend(vote.id, "GHOST", REASON)
    assert sql_stores.votes.find(campaign.id, "EMP001").candidate_staff_id == "EMP002"


def test_concurrent_delete_and_vote_leave_no_orphan(sql_stores, clock):
    for staff_id, name in [("EMP001", "Alice"), ("EMP002", "Bob")]:
        sql_stores.staff.create(staff_id, "x", name, "Server", "Front of House")

    def delete_campaign(campaign_id, barrier):
        barrier.wait()
        try:
            sql_stores.campaigns.delete(campaign_id)
            return "deleted"
        except ConflictError:
            return "conflict"

    def vote(campaign_id, barrier):
        barrier.wait()
        try:
            sql_stores.votes.create(campaign_id, "EMP001", "EMP002", REASON)
            return "voted"
        except NotFoundError:
            return "not found"

    for _ in range(5):
        campaign = sql_stores.campaigns.create("Race", None, clock(), clock() + timedelta(days=1))
        barrier = threading.Barrier(2)
        with ThreadPoolExecutor(max_workers=2) as pool:
            deleting = pool.submit(delete_campaign, campaign.id, barrier)
            voting = pool.submit(vote, campaign.id, barrier)
            outcome = (deleting.result(), voting.result())

        assert outcome in {("deleted", "not found"), ("conflict", "voted")}
        if sql_stores.campaigns.get(campaign.id) is None:
            assert sql_stores.votes.stats(campaign.id).total_votes == 0
        else:
            assert sql_stores.votes.stats(campaign.id).total_votes == 1


class VoteArrivesAfterGuard:
    """Votes collection that lets one vote in right after the first count."""

    def __init__(self, collection, vote):
        self._collection = collection
        self._vote = vote
        self._pending = True

    def count_documents(self, query):
        count = self._collection.count_documents(query)
        if self._pending:
            self._pending = False
            self._collection.insert_one(self._vote)
        return count

    def __getattr__(self, name):
        return getattr(self._collection, name)


def test_mongo_delete_restores_campaign_when_a_vote_slips_in(mongo_stores, clock):
    campaign = mongo_stores.campaigns.create("Race", None, clock(), clock() + timedelta(days=1))
    mongo_stores.campaigns.votes = VoteArrivesAfterGuard(
        mongo_stores.campaigns.votes,
        {
            "campaign_id": ObjectId(campaign.id),
            "voter_staff_id": "EMP001",
            "candidate_staff_id": "EMP002",
            "reason": REASON,
            "created_at": clock(),
        },
    )

    with pytest.raises(ConflictError, match="existing votes"):
        mongo_stores.campaigns.delete(campaign.id)

    restored = mongo_stores.campaigns.get(campaign.id)
    assert restored is not None
    assert restored.title == "Race"
    assert mongo_stores.votes.stats(campaign.id).total_votes == 1


def test_concurrent_double_submission_inserts_once(sql_stores, clock):
    for staff_id, name in [("EMP001", "Alice"), ("EMP002", "Bob")]:
        sql_stores.staff.create(staff_id, "x", name, "Server", "Front of House")
    campaigns = CampaignService(sql_stores.campaigns, sql_stores.votes, clock=clock)
    campaign = campaigns.create("Race", None, clock() + timedelta(hours=1), clock() + timedelta(days=1))
    campaigns.set_published(campaign.id, True)
    clock.advance(hours=2)
    service = VoteService(sql_stores.campaigns, sql_stores.staff, sql_stores.votes, clock=clock)

    attempts = 8
    barrier = threading.Barrier(attempts)

    def attempt(_):
        barrier.wait()
        try:
            service.cast_vote(campaign.id, "EMP001", "EMP002", REASON)
            return "ok"
        except ConflictError:
            return "conflict"

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        outcomes = list(pool.map(attempt, range(attempts)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == attempts - 1
    assert sql_stores.votes.stats(campaign.id).total_votes == 1


def test_amend_vote(vote_service, roster, running):
    vote = vote_service.cast_vote(running.id, "EMP001", "EMP002", REASON)

    amended = vote_service.amend_vote(vote.id, "EMP001", "EMP003", "  Changed my mind, Cara rocks  ")

    assert amended.id == vote.id
    assert amended.candidate_staff_id == "EMP003"
    assert amended.reason == "Changed my mind, Cara rocks"


def test_amend_vote_only_by_owner(vote_service, roster, running):
    vote = vote_service.cast_vote(running.id, "EMP001", "EMP002", REASON)

    with pytest.raises(NotFoundError, match="not authorized"):
        vote_service.amend_vote(vote.id, "EMP002", "EMP003", "Hijacking this vote")
    with pytest.raises(NotFoundError):
        vote_service.amend_vote("777777", "EMP001", "EMP003", "Does not exist at all")


def test_amend_vote_rules(vote_service, add_staff, roster, running, clock):
    add_staff("EMP009", "Gone", active=False)
    vote = vote_service.cast_vote(running.id, "EMP001", "EMP002", REASON)

    with pytest.raises(ValidationError, match="at least 10 characters"):
        vote_service.amend_vote(vote.id, "EMP001", "EMP003", "short")
    with pytest.raises(ValidationError, match="cannot vote for yourself"):
        vote_service.amend_vote(vote.id, "EMP001", "EMP001", "Voting for me now")
    with pytest.raises(ValidationError, match="inactive"):
        vote_service.amend_vote(vote.id, "EMP001", "EMP009", "They left last week")

    clock.advance(days=30)
    with pytest.raises(ValidationError, match="no longer active"):
        vote_service.amend_vote(vote.id, "EMP001", "EMP003", "Too late to change")


def test_my_vote(vote_service, roster, running):
    assert vote_service.my_vote(running.id, "EMP001") is None

    vote_service.cast_vote(running.id, "EMP001", "EMP002", REASON)
    mine = vote_service.my_vote(running.id, "EMP001")

    assert mine.candidate_staff_id == "EMP002"
    assert mine.campaign_title == running.title
    assert mine.candidate_name == "Bob"
    assert mine.candidate_position == "Chef"
    assert mine.candidate_department == "Kitchen"
    assert vote_service.my_vote(running.id, "EMP002") is None


def test_list_campaign_votes(vote_service, roster, running):
    vote_service.cast_vote(running.id, "EMP001", "EMP002", REASON)
    vote_service.cast_vote(running.id, "EMP003", "EMP002", "Best omelettes in town")

    votes = vote_service.list_campaign_votes(running.id)

    assert len(votes) == 2
    assert {v.voter_name for v in votes} == {"Alice", "Cara"}
    assert all(v.candidate_name == "Bob" for v in votes)


def test_tally_two_staff(stores, vote_service, campaign_service, open_campaign, add_staff, clock):
    add_staff("A", "A")
    add_staff("B", "B")
    add_staff("V", "Voter", active=True)
    campaign = open_campaign()
    clock.advance(hours=2)
    vote_service.cast_vote(campaign.id, "V", "A", "Outstanding service")
    # the voter stays out of the candidate rows once deactivated
    stores.staff.update(stores.staff.get_by_staff_id("V").id, "Voter", "Server", "Front of House", None, None, False)

    rows = campaign_service.results(campaign.id)

    assert [(r.name, r.vote_count) for r in rows] == [("A", 1), ("B", 0)]
    assert rows[0].reasons == ["Outstanding service"]
    assert rows[1].reasons == []


def test_tally_properties(stores, vote_service, campaign_service, open_campaign, add_staff, clock):
    for i, name in enumerate(["Zed", "Amy", "Kim", "Bea", "Lou", "Ray"]):
        add_staff(f"EMP{i:03d}", name)
    add_staff("EMP900", "Inactive Ivy", active=False)
    campaign = open_campaign()
    clock.advance(hours=2)
    ballots = [
        ("EMP000", "EMP001"),
        ("EMP002", "EMP001"),
        ("EMP003", "EMP000"),
        ("EMP004", "EMP000"),
        ("EMP005", "EMP002"),
        ("EMP001", "EMP003"),
    ]
    for voter, candidate in ballots:
        vote_service.cast_vote(campaign.id, voter, candidate, f"Because {voter} says so")

    rows = campaign_service.results(campaign.id)

    assert len(rows) == 6
    assert "Inactive Ivy" not in [r.name for r in rows]
    assert sum(r.vote_count for r in rows) == len(ballots)
    for prev, cur in zip(rows, rows[1:]):
        assert prev.vote_count >= cur.vote_count
        if prev.vote_count == cur.vote_count:
            assert prev.name <= cur.name
    amy = next(r for r in rows if r.name == "Amy")
    assert amy.reasons == ["Because EMP000 says so", "Because EMP002 says so"]


def test_tally_ties_break_by_code_point(campaign_service, open_campaign, add_staff):
    for staff_id, name in [("EMP001", "bob"), ("EMP002", "Émile"), ("EMP003", "Zed"), ("EMP004", "amy")]:
        add_staff(staff_id, name)
    campaign = open_campaign()

    rows = campaign_service.results(campaign.id)

    assert [r.name for r in rows] == ["Zed", "amy", "bob", "Émile"]


def test_stats(stores, vote_service, campaign_service, roster, running):
    vote_service.cast_vote(running.id, "EMP001", "EMP002", REASON)
    vote_service.cast_vote(running.id, "EMP003", "EMP002", REASON)
    vote_service.cast_vote(running.id, "EMP002", "EMP001", REASON)

    stats = campaign_service.stats(running.id)

    assert stats.total_votes == 3
    assert stats.unique_voters == 3
    assert stats.candidates == 2
    assert stats.total_staff == 3
