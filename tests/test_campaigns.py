from datetime import timedelta

import pytest

from staffvote.exceptions import ConflictError, NotFoundError, ValidationError


def test_create_defaults_to_active_and_unpublished(campaign_service, clock):
    campaign = campaign_service.create(
        title="Kitchen Hero",
        description="Who kept the line moving?",
        start_date=clock() + timedelta(days=1),
        end_date=clock() + timedelta(days=8),
    )

    assert campaign.id
    assert campaign.title == "Kitchen Hero"
    assert campaign.is_active is True
    assert campaign.is_published is False
    assert campaign_service.get(campaign.id).title == "Kitchen Hero"


@pytest.mark.parametrize("end_offset", [timedelta(0), timedelta(hours=-1)])
def test_create_rejects_end_not_after_start(campaign_service, clock, end_offset):
    start = clock() + timedelta(days=1)
    with pytest.raises(ValidationError, match="End date must be after start date"):
        campaign_service.create("Bad window", None, start, start + end_offset)


@pytest.mark.parametrize("start_offset", [timedelta(0), timedelta(minutes=-5)])
def test_create_requires_future_start(campaign_service, clock, start_offset):
    with pytest.raises(ValidationError, match="Start date must be in the future"):
        campaign_service.create(
            "Too late", None, clock() + start_offset, clock() + timedelta(days=3)
        )


def test_create_requires_title_and_dates(campaign_service, clock):
    with pytest.raises(ValidationError, match="required"):
        campaign_service.create("   ", None, clock() + timedelta(days=1), clock() + timedelta(days=2))
    with pytest.raises(ValidationError, match="required"):
        campaign_service.create("No end", None, clock() + timedelta(days=1), None)


def test_update_allows_start_in_the_past(campaign_service, open_campaign, clock):
    campaign = open_campaign()

    updated = campaign_service.update(
        campaign.id,
        title="Renamed",
        description="now running",
        start_date=clock() - timedelta(days=2),
        end_date=clock() + timedelta(days=2),
    )

    assert updated.title == "Renamed"
    assert updated.start_date < clock()
    # omitted flags are left alone
    assert updated.is_published is True
    assert updated.is_active is True


def test_update_can_deactivate_and_still_checks_window(campaign_service, open_campaign, clock):
    campaign = open_campaign()

    updated = campaign_service.update(
        campaign.id, "Paused", None, campaign.start_date, campaign.end_date, is_active=False
    )
    assert updated.is_active is False

    with pytest.raises(ValidationError):
        campaign_service.update(campaign.id, "Paused", None, campaign.end_date, campaign.start_date)


def test_update_missing_campaign(campaign_service, clock):
    with pytest.raises(NotFoundError):
        campaign_service.update("999999", "Ghost", None, clock(), clock() + timedelta(days=1))


def test_set_published_toggles_only_publish_flag(campaign_service, open_campaign):
    campaign = open_campaign(publish=False)

    published = campaign_service.set_published(campaign.id, True)
    assert published.is_published is True
    assert published.title == campaign.title
    assert published.start_date == campaign.start_date

    assert campaign_service.set_published(campaign.id, False).is_published is False


def test_set_published_missing_campaign(campaign_service):
    with pytest.raises(NotFoundError):
        campaign_service.set_published("not-an-id", True)


def test_delete_without_votes(campaign_service, open_campaign):
    campaign = open_campaign()

    campaign_service.delete(campaign.id)

    with pytest.raises(NotFoundError):
        campaign_service.get(campaign.id)


def test_delete_missing_campaign(campaign_service):
    with pytest.raises(NotFoundError):
        campaign_service.delete("123456")


def test_delete_with_votes_conflicts(campaign_service, vote_service, open_campaign, add_staff, clock):
    add_staff("EMP001", "Alice")
    add_staff("EMP002", "Bob")
    campaign = open_campaign()
    clock.advance(hours=2)
    vote_service.cast_vote(campaign.id, "EMP001", "EMP002", "Stayed late to help close")

    with pytest.raises(ConflictError, match="existing votes"):
        campaign_service.delete(campaign.id)

    assert campaign_service.get(campaign.id)


def test_votable_lifecycle(campaign_service, clock):
    campaign = campaign_service.create(
        "Monthly Shout-out",
        None,
        start_date=clock() + timedelta(days=1),
        end_date=clock() + timedelta(days=8),
    )

    # not started, not published
    assert campaign_service.list_votable() == []
    assert not campaign.is_votable(clock())

    campaign = campaign_service.set_published(campaign.id, True)
    assert campaign_service.list_votable() == []

    clock.advance(days=2)
    assert [c.id for c in campaign_service.list_votable()] == [campaign.id]
    assert campaign.is_votable(clock())
    assert not campaign.is_viewable(clock())

    clock.advance(days=7)
    assert campaign_service.list_votable() == []
    assert campaign.is_viewable(clock())
    assert campaign_service.public_results(campaign.id).campaign.id == campaign.id


def test_list_votable_skips_inactive(campaign_service, open_campaign, clock):
    campaign = open_campaign()
    campaign_service.update(
        campaign.id, campaign.title, None, campaign.start_date, campaign.end_date, is_active=False
    )
    clock.advance(hours=2)

    assert campaign_service.list_votable() == []


def test_list_all_newest_first(campaign_service, open_campaign):
    first = open_campaign(title="First")
    second = open_campaign(title="Second")

    assert [c.id for c in campaign_service.list_all()] == [second.id, first.id]


def test_results_and_stats_require_campaign(campaign_service):
    with pytest.raises(NotFoundError):
        campaign_service.results("424242")
    with pytest.raises(NotFoundError):
        campaign_service.stats("424242")


def test_public_results_hidden_until_closed(campaign_service, open_campaign, clock):
    campaign = open_campaign(publish=False)
    clock.advance(days=10)

    with pytest.raises(ValidationError, match="not yet available"):
        campaign_service.public_results(campaign.id)

    campaign_service.set_published(campaign.id, True)
    assert campaign_service.public_results(campaign.id).results == []


def test_admin_results_available_before_close(campaign_service, open_campaign, add_staff):
    add_staff("EMP001", "Alice")
    campaign = open_campaign()

    rows = campaign_service.results(campaign.id)

    assert [r.name for r in rows] == ["Alice"]
    assert rows[0].vote_count == 0


def test_published_views_hide_drafts(campaign_service, open_campaign):
    draft = open_campaign(title="Draft", publish=False)
    live = open_campaign(title="Live")

    assert [c.id for c in campaign_service.list_published()] == [live.id]
    assert campaign_service.get_published(live.id).title == "Live"
    with pytest.raises(NotFoundError):
        campaign_service.get_published(draft.id)
    with pytest.raises(NotFoundError):
        campaign_service.stats(draft.id, published_only=True)
    assert campaign_service.stats(draft.id).total_votes == 0
